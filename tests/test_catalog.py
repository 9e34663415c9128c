import asyncio
from uuid import uuid4

import pytest

from casedesk.errors import ConflictError, NotFoundError, ValidationError
from casedesk.api import Container
from casedesk.models import Assessment, Criterion, OptionInput, Perspective
from casedesk.repositories import EvaluationConfigRepository
from casedesk.services import DEFAULT_VOCABULARIES, CatalogCache, EvaluationCatalog, aggregate_score


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingRepository(EvaluationConfigRepository):
    def __init__(self, database):
        super().__init__(database)
        self.lookups = 0

    async def find_active(self, perspective, criterion):
        self.lookups += 1
        return await super().find_active(perspective, criterion)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def repo(database):
    return CountingRepository(database)


@pytest.fixture()
def catalog(repo, clock):
    return EvaluationCatalog(repo, cache=CatalogCache(ttl_seconds=60, clock=clock))


TWO_OPTIONS = [OptionInput(label="Rất dễ", points=1), OptionInput(label="Rất khó", points=5)]


async def test_upsert_then_get_returns_same_options_in_order(catalog):
    await catalog.upsert_options(Perspective.USER, Criterion.DIFFICULTY, TWO_OPTIONS)

    options = await catalog.get_options(Perspective.USER, Criterion.DIFFICULTY)
    assert [(o.label, o.points) for o in options] == [("Rất dễ", 1), ("Rất khó", 5)]
    assert [o.order for o in options] == [0, 1]


async def test_repeated_upsert_keeps_one_config(catalog, repo):
    await catalog.upsert_options(Perspective.USER, Criterion.DIFFICULTY, TWO_OPTIONS)
    await catalog.upsert_options(Perspective.USER, Criterion.DIFFICULTY, TWO_OPTIONS)

    assert await repo.count() == 1
    options = await catalog.get_options(Perspective.USER, Criterion.DIFFICULTY)
    assert len(options) == 2


async def test_upsert_replaces_whole_list(catalog):
    await catalog.upsert_options(Perspective.ADMIN, Criterion.IMPACT, TWO_OPTIONS)
    await catalog.upsert_options(
        Perspective.ADMIN, Criterion.IMPACT, [OptionInput(label="Chỉ một", points=3)]
    )

    options = await catalog.get_options(Perspective.ADMIN, Criterion.IMPACT)
    assert [o.label for o in options] == ["Chỉ một"]


async def test_empty_vocabulary_is_not_an_error(catalog):
    assert await catalog.get_options(Perspective.ADMIN, Criterion.FORM) == []


async def test_options_are_validated(catalog):
    with pytest.raises(ValidationError):
        await catalog.upsert_options(Perspective.USER, Criterion.TIME, [])
    with pytest.raises(ValidationError, match="positive"):
        await catalog.upsert_options(
            Perspective.USER, Criterion.TIME, [OptionInput(label="Zero", points=0)]
        )
    with pytest.raises(ValidationError):
        await catalog.upsert_options(Perspective.USER, Criterion.TIME, [{"label": "", "points": 1}])


async def test_lookups_are_cached_until_ttl(catalog, repo, clock):
    await catalog.get_options(Perspective.USER, Criterion.IMPACT)
    await catalog.get_options(Perspective.USER, Criterion.IMPACT)
    assert repo.lookups == 1

    clock.now += 61
    await catalog.get_options(Perspective.USER, Criterion.IMPACT)
    assert repo.lookups == 2


async def test_writes_invalidate_the_cache(catalog):
    assert await catalog.get_options(Perspective.USER, Criterion.URGENCY) == []

    await catalog.upsert_options(Perspective.USER, Criterion.URGENCY, TWO_OPTIONS)
    assert len(await catalog.get_options(Perspective.USER, Criterion.URGENCY)) == 2

    await catalog.deactivate(Perspective.USER, Criterion.URGENCY)
    assert await catalog.get_options(Perspective.USER, Criterion.URGENCY) == []


async def test_cached_options_are_copies(catalog):
    await catalog.upsert_options(Perspective.USER, Criterion.DIFFICULTY, TWO_OPTIONS)
    first = await catalog.get_options(Perspective.USER, Criterion.DIFFICULTY)
    first[0].label = "changed"

    again = await catalog.get_options(Perspective.USER, Criterion.DIFFICULTY)
    assert again[0].label == "Rất dễ"


async def test_deactivate_without_active_config(catalog):
    with pytest.raises(NotFoundError):
        await catalog.deactivate(Perspective.ADMIN, Criterion.TIME)


async def test_score_range_falls_back_to_builtin_scale(catalog):
    assert await catalog.score_range(Perspective.USER, Criterion.DIFFICULTY) == (1, 5)
    assert await catalog.score_range(Perspective.USER, Criterion.FORM) == (2, 4)
    assert await catalog.score_range(Perspective.ADMIN, Criterion.TIME) == (1, 7)
    assert await catalog.score_range(Perspective.ADMIN, Criterion.FORM) is None


async def test_score_range_follows_active_config(catalog):
    await catalog.upsert_options(
        Perspective.ADMIN,
        Criterion.URGENCY,
        [OptionInput(label="Thấp", points=2), OptionInput(label="Cao", points=9)]
    )
    assert await catalog.score_range(Perspective.ADMIN, Criterion.URGENCY) == (2, 9)


# =============================================================================
# Id-addressed administration
# =============================================================================

async def test_create_config_twice_is_a_conflict(catalog):
    await catalog.create_config(Perspective.USER, Criterion.IMPACT, TWO_OPTIONS)
    with pytest.raises(ConflictError, match="already exists"):
        await catalog.create_config(Perspective.USER, Criterion.IMPACT, TWO_OPTIONS)


async def test_concurrent_creators_cannot_both_win(catalog, repo):
    results = await asyncio.gather(
        catalog.create_config(Perspective.USER, Criterion.TIME, TWO_OPTIONS),
        catalog.create_config(Perspective.USER, Criterion.TIME, TWO_OPTIONS),
        return_exceptions=True
    )
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1
    assert await repo.count() == 1


async def test_update_config_replaces_options_and_toggles(catalog):
    config = await catalog.create_config(Perspective.ADMIN, Criterion.DIFFICULTY, TWO_OPTIONS)

    updated = await catalog.update_config(
        config.id, options=[OptionInput(label="Mới", points=4)]
    )
    assert [o.label for o in updated.options] == ["Mới"]

    disabled = await catalog.update_config(config.id, is_active=False)
    assert disabled.is_active is False
    assert await catalog.get_options(Perspective.ADMIN, Criterion.DIFFICULTY) == []


async def test_reactivating_behind_another_active_config_conflicts(catalog):
    old = await catalog.create_config(Perspective.USER, Criterion.FORM, TWO_OPTIONS)
    await catalog.deactivate_config(old.id)
    await catalog.create_config(Perspective.USER, Criterion.FORM, TWO_OPTIONS)

    with pytest.raises(ConflictError):
        await catalog.update_config(old.id, is_active=True)


async def test_unknown_config_is_not_found(catalog):
    with pytest.raises(NotFoundError):
        await catalog.get_config(uuid4())
    with pytest.raises(NotFoundError):
        await catalog.update_config(uuid4(), is_active=False)
    with pytest.raises(NotFoundError):
        await catalog.deactivate_config(uuid4())


async def test_list_configs_filters(catalog):
    await catalog.create_config(Perspective.USER, Criterion.IMPACT, TWO_OPTIONS)
    await catalog.create_config(Perspective.ADMIN, Criterion.IMPACT, TWO_OPTIONS)
    await catalog.create_config(Perspective.ADMIN, Criterion.TIME, TWO_OPTIONS)

    assert len(await catalog.list_configs()) == 3
    assert len(await catalog.list_configs(perspective=Perspective.ADMIN)) == 2
    assert len(await catalog.list_configs(criterion=Criterion.IMPACT)) == 2


async def test_seed_defaults_installs_every_builtin_vocabulary(catalog):
    created = await catalog.seed_defaults()
    assert len(created) == len(DEFAULT_VOCABULARIES)

    admin_time = await catalog.get_options(Perspective.ADMIN, Criterion.TIME)
    assert [o.points for o in admin_time] == [1, 2, 3, 4, 5, 6, 7]

    with pytest.raises(ConflictError):
        await catalog.seed_defaults()


def test_cache_with_zero_ttl_stores_nothing():
    cache = CatalogCache(ttl_seconds=0)
    cache.put((Perspective.USER, Criterion.TIME), [])
    assert len(cache) == 0


async def test_injected_cache_is_the_one_used(repo):
    cache = CatalogCache(ttl_seconds=0)
    catalog = EvaluationCatalog(repo, cache=cache)
    assert catalog.cache is cache

    # Zero TTL turns caching off
    await catalog.get_options(Perspective.USER, Criterion.IMPACT)
    await catalog.get_options(Perspective.USER, Criterion.IMPACT)
    assert repo.lookups == 2


def test_container_cache_ttl_comes_from_settings(settings, database):
    settings = settings.model_copy(update={"catalog_cache_ttl_seconds": 7})
    container = Container.build(settings, database=database)
    assert container.catalog.cache.ttl_seconds == 7


def test_aggregate_score_is_perspective_local_sum():
    assert aggregate_score(Assessment()) is None
    assert aggregate_score(Assessment(difficulty=3, estimated_time=2, impact=4, urgency=5)) == 14
    assert aggregate_score(
        Assessment(difficulty=1, estimated_time=1, impact=1, urgency=1, form=4)
    ) == 8
