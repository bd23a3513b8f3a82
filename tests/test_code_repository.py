import pytest

from conftest import MANGO_RECORDS, BrokenStore, CountingStore, MemoryCodeStore
from tariff_classifier.config import RepositoryConfig
from tariff_classifier.data_models import CodeRecord, InvalidCode, InvalidReason, ValidCode
from tariff_classifier.io.code_repository import CodeRepository
from tariff_classifier.io.lookup_cache import TTLCache


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["0804.50.40.10", "0804504010", " 0804.50.40.10 "])
async def test_validate_accepts_dotted_and_undotted(repository, code):
    outcome = await repository.validate(code)

    assert isinstance(outcome, ValidCode)
    assert outcome.record.code == "0804.50.40.10"
    assert outcome.record.description.startswith("Mangoes, fresh")


@pytest.mark.asyncio
async def test_dotted_and_undotted_give_identical_invalid_outcomes(repository):
    dotted = await repository.validate("0804.50.40.99")
    undotted = await repository.validate("0804504099")

    assert dotted == undotted
    assert dotted.reason is InvalidReason.NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code",
    ["1234.56.78", "12345678901", "0804.50.40.1a", "", "abcdefghij", "0804-50-40-10", "٠٨٠٤٥٠٤٠١٠"],
)
async def test_malformed_code_never_touches_store(counting_store, code):
    repo = CodeRepository(counting_store)

    outcome = await repo.validate(code)

    assert isinstance(outcome, InvalidCode)
    assert outcome.reason is InvalidReason.MALFORMED
    assert outcome.candidates == []
    assert outcome.subheading is None
    assert counting_store.calls == []


@pytest.mark.asyncio
async def test_not_found_lists_candidates_under_subheading_in_order(repository):
    outcome = await repository.validate("0804.50.40.99")

    assert isinstance(outcome, InvalidCode)
    assert outcome.reason is InvalidReason.NOT_FOUND
    assert outcome.subheading == "080450"
    assert [c.code for c in outcome.candidates] == [r.code for r in MANGO_RECORDS]
    assert all(c.code.replace(".", "").startswith("080450") for c in outcome.candidates)


@pytest.mark.asyncio
async def test_not_found_without_candidates_means_wrong_subheading(repository):
    outcome = await repository.validate("9999.99.99.99")

    assert isinstance(outcome, InvalidCode)
    assert outcome.reason is InvalidReason.NOT_FOUND
    assert outcome.candidates == []


@pytest.mark.asyncio
async def test_candidates_are_capped_at_fifteen():
    records = [CodeRecord(code=f"0101.21.00.{i:02d}", description=f"Horse {i}") for i in range(1, 30)]
    repo = CodeRepository(MemoryCodeStore(records), repo_config=RepositoryConfig(max_candidates=40))

    outcome = await repo.validate("0101.21.00.99")

    assert len(outcome.candidates) == 15
    assert outcome.candidates[0].code == "0101.21.00.01"


@pytest.mark.asyncio
async def test_candidates_from_store_not_sharing_prefix_are_dropped():
    class SloppyStore(MemoryCodeStore):
        def find_by_subheading(self, subheading, limit):
            return self._records[:limit]

    repo = CodeRepository(SloppyStore(MANGO_RECORDS + [CodeRecord(code="0804.10.20.00", description="Dates")]))

    outcome = await repo.validate("0804.50.40.99")

    assert [c.code for c in outcome.candidates] == [r.code for r in MANGO_RECORDS]


@pytest.mark.asyncio
async def test_store_failure_is_lookup_error_not_not_found():
    store = BrokenStore()
    cache = TTLCache(ttl_seconds=300, max_entries=10)
    repo = CodeRepository(store, cache=cache)

    outcome = await repo.validate("0804.50.40.10")

    assert isinstance(outcome, InvalidCode)
    assert outcome.reason is InvalidReason.LOOKUP_ERROR
    assert "database is locked" in outcome.cause
    assert outcome.candidates == []

    # сбой не кэшируется, второй вызов снова идёт в хранилище
    await repo.validate("0804.50.40.10")
    assert store.calls == 2
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_cache_serves_repeated_lookups(counting_store):
    repo = CodeRepository(counting_store, cache=TTLCache(ttl_seconds=300, max_entries=10))

    first = await repo.validate("0804.50.40.10")
    second = await repo.validate("0804.50.40.10")

    assert first == second
    assert counting_store.calls == ["find_exact"]


@pytest.mark.asyncio
async def test_cache_entries_expire():
    now = [0.0]
    store = CountingStore(MemoryCodeStore(MANGO_RECORDS))
    cache = TTLCache(ttl_seconds=300, max_entries=10, clock=lambda: now[0])
    repo = CodeRepository(store, cache=cache)

    await repo.validate("0804.50.40.10")
    now[0] = 299.0
    await repo.validate("0804.50.40.10")
    now[0] = 301.0
    await repo.validate("0804.50.40.10")

    assert store.calls == ["find_exact", "find_exact"]


def test_ttl_cache_evicts_oldest_entry():
    cache = TTLCache(ttl_seconds=300, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


@pytest.mark.asyncio
async def test_lookup_by_heading_and_subheading(repository):
    by_heading = await repository.lookup_by_heading("0804")
    by_subheading = await repository.lookup_by_subheading("080450")

    assert [r.code for r in by_heading] == ["0804.10.20.00"] + [r.code for r in MANGO_RECORDS]
    assert len(by_subheading) == 5
