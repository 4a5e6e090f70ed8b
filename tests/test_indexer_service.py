"""
Tests for the tee-time indexer in teesheet/services/indexer_service.py.

A ForeUp adapter backed by httpx.MockTransport serves a mutable feed, and
an in-memory SQLite database holds the stored tee times, so each test runs
the real diff and write path. The re-index check also runs against fixed
feeds for every provider adapter.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from teesheet.models.database import Base
from teesheet.models.schemas import ProviderCourseLink
from teesheet.providers.base import ProviderDataError
from teesheet.providers.clubprophet_provider import ClubProphetProvider
from teesheet.providers.foreup_provider import ForeUpProvider
from teesheet.providers.lightspeed_provider import LightspeedProvider
from teesheet.providers.quick_eighteen_provider import QuickEighteenProvider
from teesheet.services.cache_service import InMemoryCacheService
from teesheet.services.database_service import database_service
from teesheet.services.indexer_service import (
    INDEXING_SCHEDULE,
    TeeTimeIndexer,
    should_index_day,
)

DAY = "2025-06-01"


@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_local(test_engine, monkeypatch):
    """Point the database and error-log services at the test database."""
    session_local = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr("teesheet.services.database_service.AsyncSessionLocal", session_local)
    monkeypatch.setattr("teesheet.services.error_log_service.AsyncSessionLocal", session_local)
    return session_local


class FakeForeUp:
    """A ForeUp tee sheet whose tee times tests can change between runs."""

    def __init__(self) -> None:
        self.feed: dict[str, list[dict]] = {}
        self.failing_days: set[str] = set()
        self.requests: list[str] = []

    def add(self, day: str, tee_time_id: str, clock: str, spots: int = 4, fee: float = 45.5) -> None:
        self.feed.setdefault(day, []).append(
            {
                "type": "teetimes",
                "id": tee_time_id,
                "attributes": {
                    "time": f"{day}T{clock}:00-05:00",
                    "holes": 18,
                    "availableSpots": spots,
                    "allowedGroupSizes": [1, 2, 3, 4],
                    "greenFee": fee,
                    "cartFee": 15,
                },
            }
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        day = request.url.params["date"]
        self.requests.append(day)
        if day in self.failing_days:
            return httpx.Response(500, json={"error": "unavailable"})
        return httpx.Response(200, json={"data": self.feed.get(day, [])})


@pytest.fixture
def fake() -> FakeForeUp:
    return FakeForeUp()


@pytest.fixture
def provider(fake: FakeForeUp) -> ForeUpProvider:
    error_logger = MagicMock()
    error_logger.error_log = AsyncMock()
    return ForeUpProvider(
        {"BASE_ENDPOINT": "https://foreup.test"},
        InMemoryCacheService(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)),
        error_logger=error_logger,
    )


@pytest.fixture
def link() -> ProviderCourseLink:
    return ProviderCourseLink(
        course_id="course-1",
        provider_id="fore-up",
        provider_course_id="19765",
        provider_tee_sheet_id="1470",
        timezone="America/Chicago",
    )


def foreup_feed() -> dict:
    fake = FakeForeUp()
    fake.add(DAY, "A", "08:30")
    fake.add(DAY, "B", "08:40", spots=3)
    return {"data": fake.feed[DAY]}


def clubprophet_feed() -> list:
    return [
        {
            "teeSheetId": 9001 + i,
            "startTime": f"{DAY}T08:{minutes}:00",
            "freeSlots": 4 - i,
            "is18HoleOnly": False,
            "is9HoleOnly": False,
            "greenFee18": 45.50,
            "cartFee18": 15.0,
            "greenFee9": 25.0,
            "cartFee9": 8.0,
        }
        for i, minutes in enumerate(("30", "40"))
    ]


def lightspeed_feed() -> dict:
    return {
        "data": [
            {
                "type": "teetime",
                "id": f"t-{i}",
                "attributes": {
                    "date": DAY,
                    "start_time": start,
                    "free_slots": 4 - i,
                    "hole": 18,
                    "rates": [{"green_fee": 45.5, "one_person_cart": 15}],
                },
            }
            for i, start in enumerate(("8:30", "8:40"))
        ],
        "meta": {"page": 1, "total_pages": 1},
    }


def quick_eighteen_feed() -> dict:
    return {
        "Times": [
            {
                "TeeTimeId": 321 + i,
                "TeeDateTime": f"{DAY} 08:{minutes}",
                "Availability": 4 - i,
                "Prices": [
                    {
                        "GreensFee": 45.5,
                        "Adjustments": [{"Name": "Taxes and/or Fees", "Amount": 3.64}],
                    }
                ],
            }
            for i, minutes in enumerate(("30", "40"))
        ]
    }


FEEDS = {
    "fore-up": (ForeUpProvider, {"BASE_ENDPOINT": "https://foreup.test"}, foreup_feed),
    "club-prophet": (
        ClubProphetProvider,
        {"TEESHEET_ENDPOINT": "https://cps.test/TeeTimes", "RATE_CODE": "WEB"},
        clubprophet_feed,
    ),
    "light-speed": (
        LightspeedProvider,
        {"BASE_ENDPOINT": "https://lightspeed.test", "ORGANIZATION_ID": "42"},
        lightspeed_feed,
    ),
    "quick-18": (
        QuickEighteenProvider,
        {"BASE_ENDPOINT": "https://q18.test/api", "FACILITY_ID": "55"},
        quick_eighteen_feed,
    ),
}


def make_feed_provider(provider_id: str):
    provider_class, configuration, feed = FEEDS[provider_id]
    error_logger = MagicMock()
    error_logger.error_log = AsyncMock()
    return provider_class(
        configuration,
        InMemoryCacheService(),
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=feed()))
        ),
        timezone="America/Chicago",
        error_logger=error_logger,
    )

class TestShouldIndexDay:
    """Tests for the indexing backoff schedule."""

    def test_never_indexed_is_due(self) -> None:
        """Test that a day with no index time is always due."""
        assert should_index_day(15, None, datetime(2025, 6, 1))

    def test_today_every_fifteen_minutes(self) -> None:
        """Test the day-1 interval."""
        now = datetime(2025, 6, 1, 12, 0)
        assert not should_index_day(1, now - timedelta(minutes=14), now)
        assert should_index_day(1, now - timedelta(minutes=15), now)

    def test_tomorrow_every_thirty_minutes(self) -> None:
        """Test the day-2 interval."""
        now = datetime(2025, 6, 1, 12, 0)
        assert not should_index_day(2, now - timedelta(minutes=29), now)
        assert should_index_day(2, now - timedelta(minutes=30), now)

    def test_days_beyond_schedule_use_last_interval(self) -> None:
        """Test that days past the table reuse the longest interval."""
        now = datetime(2025, 6, 1, 12, 0)
        last = INDEXING_SCHEDULE[15]
        assert not should_index_day(20, now - last + timedelta(minutes=1), now)
        assert should_index_day(20, now - last, now)

    def test_schedule_grows_with_distance(self) -> None:
        """Test that further days are never indexed more often than nearer ones."""
        intervals = [INDEXING_SCHEDULE[d] for d in sorted(INDEXING_SCHEDULE)]
        assert intervals == sorted(intervals)
        assert INDEXING_SCHEDULE[1] == timedelta(minutes=15)


class TestIndexDay:
    """Tests for diffing and saving one day."""

    @pytest.mark.asyncio
    async def test_first_run_inserts(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that new provider tee times are inserted."""
        fake.add(DAY, "A", "08:30")
        fake.add(DAY, "B", "08:40")
        indexer = TeeTimeIndexer()

        result = await indexer.index_day(provider, "tok", link, DAY)
        written = await indexer.save_tee_times(result)

        assert [t.provider_tee_time_id for t in result.inserts] == ["A", "B"]
        assert result.updates == []
        assert result.removals == []
        assert written == 2
        stored = await database_service.get_tee_times_for_day("course-1", DAY)
        assert [t.available_first_hand_spots for t in stored] == [4, 4]

    @pytest.mark.asyncio
    async def test_second_run_without_changes_writes_nothing(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that re-indexing an unchanged feed is a no-op."""
        fake.add(DAY, "A", "08:30")
        fake.add(DAY, "B", "08:40")
        indexer = TeeTimeIndexer()
        await indexer.save_tee_times(await indexer.index_day(provider, "tok", link, DAY))

        result = await indexer.index_day(provider, "tok", link, DAY)

        assert result.is_empty
        assert await indexer.save_tee_times(result) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_id", sorted(FEEDS))
    async def test_unchanged_feed_writes_nothing_for_every_provider(
        self, test_session_local, provider_id: str
    ) -> None:
        """Test that a stored day re-indexed against the same feed is a no-op."""
        provider = make_feed_provider(provider_id)
        link = ProviderCourseLink(
            course_id="course-1",
            provider_id=provider_id,
            provider_course_id="12",
            timezone="America/Chicago",
        )
        indexer = TeeTimeIndexer()

        first = await indexer.index_day(provider, "tok", link, DAY)
        assert await indexer.save_tee_times(first) == 2

        second = await indexer.index_day(provider, "tok", link, DAY)

        assert second.is_empty
        assert await indexer.save_tee_times(second) == 0
        stored = await database_service.get_tee_times_for_day("course-1", DAY)
        assert sorted(t.available_first_hand_spots for t in stored) == [3, 4]

    @pytest.mark.asyncio
    async def test_changed_fee_is_updated(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that a changed provider field becomes an update under the same id."""
        fake.add(DAY, "A", "08:30")
        indexer = TeeTimeIndexer()
        await indexer.save_tee_times(await indexer.index_day(provider, "tok", link, DAY))
        original = await database_service.get_tee_time_by_provider_id("A")

        fake.feed[DAY] = []
        fake.add(DAY, "A", "08:30", fee=50)
        result = await indexer.index_day(provider, "tok", link, DAY)
        await indexer.save_tee_times(result)

        assert len(result.updates) == 1
        stored = await database_service.get_tee_time_by_provider_id("A")
        assert stored.id == original.id
        assert stored.green_fee_per_player == 5000

    @pytest.mark.asyncio
    async def test_missing_tee_time_zeroed_not_deleted(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that a tee time gone from the feed keeps its row with 0 spots."""
        fake.add(DAY, "A", "08:30")
        fake.add(DAY, "B", "08:40")
        indexer = TeeTimeIndexer()
        await indexer.save_tee_times(await indexer.index_day(provider, "tok", link, DAY))
        b = await database_service.get_tee_time_by_provider_id("B")

        fake.feed[DAY] = fake.feed[DAY][:1]
        result = await indexer.index_day(provider, "tok", link, DAY)
        written = await indexer.save_tee_times(result)

        assert result.removals == [b.id]
        assert written == 1
        stored = await database_service.get_tee_time_by_provider_id("B")
        assert stored is not None
        assert stored.available_first_hand_spots == 0

        again = await indexer.index_day(provider, "tok", link, DAY)
        assert again.is_empty

    @pytest.mark.asyncio
    async def test_negative_spots_stored_as_zero(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that no stored tee time has negative availability."""
        fake.add(DAY, "A", "08:30", spots=-3)
        indexer = TeeTimeIndexer()

        await indexer.save_tee_times(await indexer.index_day(provider, "tok", link, DAY))

        stored = await database_service.get_tee_time_by_provider_id("A")
        assert stored.available_first_hand_spots == 0


class TestIndexCourse:
    """Tests for scheduling and failure isolation across days."""

    @pytest.mark.asyncio
    async def test_indexes_due_days_and_records_them(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test a full run followed by a run where only today is due."""
        link = await database_service.create_provider_course_link(link)
        fake.add(DAY, "A", "08:30")
        indexer = TeeTimeIndexer()
        now = datetime(2025, 6, 1, 15, 0)

        with patch("teesheet.services.indexer_service.provider_service") as mock_providers:
            mock_providers.get_provider_and_key = AsyncMock(return_value=(provider, "tok"))

            first = await indexer.index_course(link, now=now)

            assert first.days_indexed[0] == DAY
            assert len(first.days_indexed) == 15
            assert first.days_failed == []
            assert first.rows_written == 1

            link = await database_service.get_provider_course_link(link.id)
            assert link.last_indexed_at == now
            assert link.day_last_indexed[DAY] == now

            second = await indexer.index_course(link, now=now + timedelta(minutes=20))

        assert second.days_indexed == [DAY]
        assert len(second.days_skipped) == 14
        assert second.rows_written == 0

    @pytest.mark.asyncio
    async def test_failed_day_does_not_stop_others(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that one failing day is reported and the rest still run."""
        link = await database_service.create_provider_course_link(link)
        fake.failing_days.add("2025-06-02")
        indexer = TeeTimeIndexer()

        with patch("teesheet.services.indexer_service.provider_service") as mock_providers:
            mock_providers.get_provider_and_key = AsyncMock(return_value=(provider, "tok"))

            result = await indexer.index_course(link, now=datetime(2025, 6, 1, 15, 0))

        assert result.days_failed == ["2025-06-02"]
        assert "2025-06-03" in result.days_indexed
        link = await database_service.get_provider_course_link(link.id)
        assert "2025-06-02" not in link.day_last_indexed

    @pytest.mark.asyncio
    async def test_explicit_days(
        self, test_session_local, fake: FakeForeUp, provider: ForeUpProvider, link
    ) -> None:
        """Test that explicit days bypass the schedule."""
        link = await database_service.create_provider_course_link(link)
        indexer = TeeTimeIndexer()

        with patch("teesheet.services.indexer_service.provider_service") as mock_providers:
            mock_providers.get_provider_and_key = AsyncMock(return_value=(provider, "tok"))

            result = await indexer.index_course(link, days=["2025-06-05"])

        assert result.days_indexed == ["2025-06-05"]
        assert fake.requests == ["2025-06-05"]

    @pytest.mark.asyncio
    async def test_index_next_course_without_links(self, test_session_local) -> None:
        """Test that nothing happens when no course is linked."""
        assert await TeeTimeIndexer().index_next_course() is None

    @pytest.mark.asyncio
    async def test_link_without_token_does_not_block_other_links(
        self, test_session_local, provider: ForeUpProvider, link
    ) -> None:
        """Test that a link whose token fails is marked attempted and others still run."""
        bad = await database_service.create_provider_course_link(
            ProviderCourseLink(
                id="bad",
                course_id="course-bad",
                provider_id="fore-up",
                provider_course_id="1",
            )
        )
        good = await database_service.create_provider_course_link(
            link.model_copy(update={"id": "good"})
        )

        async def get_provider_and_key(course_link: ProviderCourseLink):
            if course_link.id == bad.id:
                raise ProviderDataError("Failed to get token for provider fore-up")
            return provider, "tok"

        indexer = TeeTimeIndexer()
        with patch("teesheet.services.indexer_service.provider_service") as mock_providers:
            mock_providers.get_provider_and_key = AsyncMock(side_effect=get_provider_and_key)

            runs = [await indexer.index_next_course() for _ in range(3)]

        assert {r.link_id for r in runs[:2]} == {"bad", "good"}
        failed = next(r for r in runs if r.link_id == "bad")
        assert failed.days_indexed == []
        assert len(failed.days_failed) == 15
        stored_bad = await database_service.get_provider_course_link(bad.id)
        assert stored_bad.last_indexed_at is not None
        assert stored_bad.day_last_indexed == {}
        assert good.id in {r.link_id for r in runs}
