"""
Tests for storage backends and transaction support
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date
from enum import Enum

from lending_circle.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage, to_storage_value
)


def make_record(record_id, **fields):
    data = {
        "id": record_id,
        "amount": "100.50",
        "created_at": datetime.now(timezone.utc).isoformat(),
        "updated_at": datetime.now(timezone.utc).isoformat()
    }
    data.update(fields)
    return data


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Test CRUD operations on every backend"""

    def test_save_load_delete(self, storage):
        """Test basic record operations"""
        storage.save("loans", "loan-1", make_record("loan-1"))

        assert storage.load("loans", "loan-1")["amount"] == "100.50"
        assert storage.exists("loans", "loan-1")
        assert storage.delete("loans", "loan-1")
        assert storage.load("loans", "loan-1") is None
        assert not storage.delete("loans", "loan-1")

    def test_find_and_count_where(self, storage):
        """Test filtered find and count"""
        storage.save("installments", "a_1", make_record("a_1", loan_id="a", installment_number=1))
        storage.save("installments", "a_2", make_record("a_2", loan_id="a", installment_number=2))
        storage.save("installments", "b_1", make_record("b_1", loan_id="b", installment_number=1))

        assert len(storage.find("installments", {"loan_id": "a"})) == 2
        assert storage.count_where("installments", {"loan_id": "b"}) == 1
        assert storage.count("installments") == 3

    def test_find_ordered(self, storage):
        """Test ordered find"""
        for number in (3, 1, 2):
            storage.save("installments", f"a_{number}", make_record(f"a_{number}", loan_id="a", installment_number=number))

        ordered = storage.find_ordered("installments", {"loan_id": "a"}, "installment_number")
        assert [record["installment_number"] for record in ordered] == [1, 2, 3]

        descending = storage.find_ordered("installments", {"loan_id": "a"}, "installment_number", descending=True)
        assert [record["installment_number"] for record in descending] == [3, 2, 1]

    def test_delete_where(self, storage):
        """Test filtered delete"""
        storage.save("capital_movements", "m1", make_record("m1", loan_id="a"))
        storage.save("capital_movements", "m2", make_record("m2", loan_id="a"))
        storage.save("capital_movements", "m3", make_record("m3", loan_id="b"))

        assert storage.delete_where("capital_movements", {"loan_id": "a"}) == 2
        assert storage.count("capital_movements") == 1

    def test_atomic_commit(self, storage):
        """Test committed transaction"""
        with storage.atomic():
            storage.save("loans", "loan-1", make_record("loan-1"))
            storage.save("loans", "loan-2", make_record("loan-2"))

        assert storage.count("loans") == 2

    def test_atomic_rollback(self, storage):
        """Test rolled back transaction"""
        storage.save("loans", "loan-1", make_record("loan-1"))

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "loan-1", make_record("loan-1", amount="999.00"))
                storage.save("loans", "loan-2", make_record("loan-2"))
                storage.delete("loans", "loan-1")
                raise RuntimeError("boom")

        assert storage.load("loans", "loan-1")["amount"] == "100.50"
        assert storage.load("loans", "loan-2") is None

    def test_nested_atomic_rolls_back_everything(self, storage):
        """Test nested transaction rollback"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "outer", make_record("outer"))
                with storage.atomic():
                    storage.save("loans", "inner", make_record("inner"))
                raise RuntimeError("boom")

        assert storage.load("loans", "outer") is None
        assert storage.load("loans", "inner") is None
        assert not storage.in_transaction


class TestStorageValues:
    """Test conversion of records to storage form"""

    def test_to_storage_value(self):
        """Test JSON-safe value conversion"""
        class Color(Enum):
            RED = "red"

        assert to_storage_value(Decimal('1.50')) == "1.50"
        assert to_storage_value(date(2024, 1, 31)) == "2024-01-31"
        assert to_storage_value(Color.RED) == "red"
        assert to_storage_value({"a": [Decimal('1'), {"b": Color.RED}]}) == {"a": ["1", {"b": "red"}]}
        assert to_storage_value({"x", "a"}) == ["a", "x"]

    def test_parse_timestamps(self):
        """Test timestamp parsing"""
        now = datetime.now(timezone.utc)
        record = StorageRecord(id="r1", created_at=now, updated_at=now)

        parsed = StorageRecord.parse_timestamps(record.to_dict())
        assert parsed["created_at"] == now


class TestCreateStorage:
    """Test storage selection from a database URL"""

    def test_memory_url(self):
        """Test in-memory storage URL"""
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        """Test SQLite storage URL"""
        storage = create_storage(f"sqlite:///{tmp_path / 'circle.db'}")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unsupported_url(self):
        """Test unsupported storage URL"""
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/circle")
