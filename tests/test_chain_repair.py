import pytest

from conftest import utc
from finplan.errors import NotFoundError, StoreError, ValidationError
from finplan.models import new_id


def edit(**overrides):
    fields = {
        "description": "Rent",
        "value": 100.0,
        "date": "2025-02-10",
        "type": "expense",
        "category": "Housing",
        "is_recurrent": True,
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def chain(engine, add_transaction, instances_of, run):
    """Root on 2025-01-10 with instances for February, March and April."""
    root = add_transaction(utc(2025, 1, 10))
    for month in (2, 3, 4):
        run(engine.materialize(2025, month))
    feb, mar, apr = (doc["id"] for doc in instances_of(root))
    return {"root": root, "feb": feb, "mar": mar, "apr": apr}


# --- edit ---

def test_editing_instance_supersedes_root(engine, chain, get_doc, instances_of, run):
    result = run(engine.reparent_on_edit(chain["feb"], edit(value=120.0)))
    assert result == {"modifiedCount": 1}

    assert get_doc(chain["root"])["is_superseded"] is True
    assert get_doc(chain["mar"]) is None
    assert get_doc(chain["apr"]) is None

    new_root = get_doc(chain["feb"])
    assert "replicated_from_id" not in new_root
    assert new_root["value"] == 120.0
    assert new_root["is_recurrent"] is True

    # the old root stays silent; the edited record drives later months
    assert run(engine.materialize(2025, 5)) == 1
    assert instances_of(chain["root"]) == []
    (may,) = instances_of(chain["feb"])
    assert may["date"] == utc(2025, 5, 10)
    assert may["value"] == 120.0


def test_editing_instance_keeps_earlier_instances_of_root(engine, chain, get_doc, run):
    run(engine.reparent_on_edit(chain["mar"], edit(date="2025-03-10")))

    assert get_doc(chain["feb"])["replicated_from_id"] == chain["root"]
    assert get_doc(chain["apr"]) is None


def test_editing_root_prunes_from_month_after_new_date(engine, chain, get_doc, run):
    run(engine.reparent_on_edit(chain["root"], edit(date="2025-02-20")))

    # February's instance predates the boundary and is left alone
    assert get_doc(chain["feb"]) is not None
    assert get_doc(chain["mar"]) is None
    assert get_doc(chain["apr"]) is None
    assert get_doc(chain["root"])["date"] == utc(2025, 2, 20)

    assert run(engine.materialize(2025, 3)) == 1


def test_demoting_root_prunes_chain_and_clears_flags(engine, chain, get_doc, instances_of, run):
    run(engine.reparent_on_edit(chain["root"], edit(date="2025-01-10", is_recurrent=False)))

    assert instances_of(chain["root"]) == []
    root = get_doc(chain["root"])
    assert root["is_recurrent"] is False
    assert "is_superseded" not in root
    assert run(engine.materialize(2025, 6)) == 0


def test_demoting_instance_makes_it_standalone(engine, chain, get_doc, run):
    run(engine.reparent_on_edit(chain["mar"], edit(date="2025-03-10", is_recurrent=False, value=75.0)))

    standalone = get_doc(chain["mar"])
    assert standalone["is_recurrent"] is False
    assert standalone["value"] == 75.0
    assert "replicated_from_id" not in standalone
    assert get_doc(chain["feb"]) is not None
    assert get_doc(chain["apr"]) is None
    assert "is_superseded" not in get_doc(chain["root"])


def test_editing_one_off_leaves_everything_else(engine, add_transaction, get_doc, run):
    one_off = add_transaction(utc(2025, 1, 3), recurrent=False, description="Shoes")
    other = add_transaction(utc(2025, 1, 4))

    result = run(engine.reparent_on_edit(one_off, edit(description="Boots", is_recurrent=False, date="2025-01-03")))

    assert result == {"modifiedCount": 1}
    assert get_doc(one_off)["description"] == "Boots"
    assert get_doc(other) is not None


def test_unchanged_edit_reports_zero_modified(engine, add_transaction, run):
    tx_id = add_transaction(utc(2025, 2, 10), recurrent=False)

    result = run(engine.reparent_on_edit(tx_id, edit(is_recurrent=False, type="EXPENSE")))

    assert result == {"modifiedCount": 0}


def test_edit_normalizes_date_and_type(engine, add_transaction, get_doc, run):
    tx_id = add_transaction(utc(2025, 2, 10), recurrent=False)

    run(engine.reparent_on_edit(tx_id, edit(date="2025-02-11T15:20:00Z", type="income", is_recurrent=False)))

    doc = get_doc(tx_id)
    assert doc["date"] == utc(2025, 2, 11)
    assert doc["type"] == "INCOME"


def test_edit_errors(engine, add_transaction, run):
    tx_id = add_transaction(utc(2025, 2, 10))

    with pytest.raises(ValidationError):
        run(engine.reparent_on_edit("not-an-id", edit()))
    with pytest.raises(NotFoundError):
        run(engine.reparent_on_edit(new_id(), edit()))
    with pytest.raises(ValidationError):
        run(engine.reparent_on_edit(tx_id, edit(category="")))
    with pytest.raises(ValidationError):
        run(engine.reparent_on_edit(tx_id, edit(value=-5)))
    with pytest.raises(ValidationError):
        run(engine.reparent_on_edit(tx_id, edit(type="transfer")))


# --- delete ---

def test_deleting_instance_prunes_future_and_reactivates_root(engine, chain, get_doc, instances_of, run):
    # Supersede the root first by promoting March
    run(engine.reparent_on_edit(chain["mar"], edit(date="2025-03-10")))
    assert get_doc(chain["root"])["is_superseded"] is True

    result = run(engine.unlink_on_delete(chain["feb"]))

    assert result == {"deletedCount": 1, "deletedFutureCount": 0}
    assert "is_superseded" not in get_doc(chain["root"])
    assert run(engine.materialize(2025, 6)) == 2
    assert [doc["date"] for doc in instances_of(chain["root"])] == [utc(2025, 6, 10)]


def test_deleting_instance_prunes_from_following_month(engine, chain, get_doc, run):
    result = run(engine.unlink_on_delete(chain["mar"]))

    assert result == {"deletedCount": 1, "deletedFutureCount": 1}
    assert get_doc(chain["feb"]) is not None
    assert get_doc(chain["mar"]) is None
    assert get_doc(chain["apr"]) is None
    assert get_doc(chain["root"]) is not None


def test_deleting_root_removes_its_future_instances(engine, chain, get_doc, run):
    result = run(engine.unlink_on_delete(chain["root"]))

    assert result == {"deletedCount": 1, "deletedFutureCount": 3}
    for key in ("root", "feb", "mar", "apr"):
        assert get_doc(chain[key]) is None


def test_deleting_lonely_root_is_a_bare_delete(engine, add_transaction, run):
    root = add_transaction(utc(2025, 1, 10))

    assert run(engine.unlink_on_delete(root)) == {"deletedCount": 1, "deletedFutureCount": 0}


def test_deleting_one_off_does_not_touch_chains(engine, chain, add_transaction, instances_of, run):
    one_off = add_transaction(utc(2025, 1, 10), recurrent=False)

    assert run(engine.unlink_on_delete(one_off)) == {"deletedCount": 1, "deletedFutureCount": 0}
    assert len(instances_of(chain["root"])) == 3


def test_delete_errors(engine, run):
    with pytest.raises(ValidationError):
        run(engine.unlink_on_delete("1234"))
    with pytest.raises(NotFoundError):
        run(engine.unlink_on_delete(new_id()))


# --- documented scenario ---

def test_rent_on_the_31st(engine, add_transaction, get_doc, instances_of, run):
    root = add_transaction(utc(2025, 1, 31), value=100.0, category="Rent")

    assert run(engine.materialize(2025, 2)) == 1
    assert run(engine.materialize(2025, 4)) == 1
    feb, apr = instances_of(root)
    assert feb["date"] == utc(2025, 2, 28)
    assert apr["date"] == utc(2025, 4, 30)

    run(engine.reparent_on_edit(
        feb["id"], edit(date="2025-02-28", value=150.0, category="Rent", is_recurrent=False),
    ))

    standalone = get_doc(feb["id"])
    assert standalone["value"] == 150.0
    assert standalone["is_recurrent"] is False
    assert "replicated_from_id" not in standalone
    assert get_doc(apr["id"]) is None
    untouched = get_doc(root)
    assert untouched["value"] == 100.0
    assert "is_superseded" not in untouched


# --- compensation ---

def test_failed_edit_rolls_back_chain_repair(engine, collection, chain, get_doc, instances_of, run, monkeypatch):
    original_update = collection.update_one

    async def failing_final_update(query, update):
        if query == {"id": chain["feb"]} and "description" in update.get("$set", {}):
            raise StoreError("database is locked")
        return await original_update(query, update)

    monkeypatch.setattr(collection, "update_one", failing_final_update)

    with pytest.raises(StoreError):
        run(engine.reparent_on_edit(chain["feb"], edit()))

    assert "is_superseded" not in get_doc(chain["root"])
    assert [doc["id"] for doc in instances_of(chain["root"])] == [chain["feb"], chain["mar"], chain["apr"]]
    assert get_doc(chain["feb"])["replicated_from_id"] == chain["root"]


def test_failed_delete_rolls_back_chain_repair(engine, collection, chain, get_doc, instances_of, run, monkeypatch):
    run(engine.reparent_on_edit(chain["apr"], edit(date="2025-04-10")))

    async def failing_delete(query):
        raise StoreError("database is locked")

    monkeypatch.setattr(collection, "delete_one", failing_delete)

    with pytest.raises(StoreError):
        run(engine.unlink_on_delete(chain["feb"]))

    assert get_doc(chain["root"])["is_superseded"] is True
    assert [doc["id"] for doc in instances_of(chain["root"])] == [chain["feb"], chain["mar"]]


def test_prune_deletes_only_the_records_it_found(engine, collection, chain, get_doc, run, monkeypatch):
    original_find = collection.find
    late = {}

    async def find_then_insert(query, sort=None):
        docs = await original_find(query, sort)
        if "$or" in query and not late:
            # a materialization pass lands between the lookup and the delete
            late["id"] = await collection.insert_one({
                "description": "Rent", "value": 100.0, "type": "EXPENSE", "category": "Housing",
                "date": utc(2025, 5, 10), "is_recurrent": True, "replicated_from_id": chain["root"],
            })
        return docs

    monkeypatch.setattr(collection, "find", find_then_insert)

    result = run(engine.unlink_on_delete(chain["root"]))

    assert result == {"deletedCount": 1, "deletedFutureCount": 3}
    assert get_doc(late["id"]) is not None
    for key in ("feb", "mar", "apr"):
        assert get_doc(chain[key]) is None
