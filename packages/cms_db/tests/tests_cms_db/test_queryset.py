import pytest
import pytest_asyncio
from cms_db import get_session_factory
from sqlalchemy import func, select, update

from .models import Article, Topic

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def articles(db_session):
    topic = await Topic.objects.create(db_session, name="School")
    rows = [
        await Article.objects.create(
            db_session,
            title="Open day",
            slug="open-day",
            status="published",
            summary="Visit 100% of classrooms",
            topic_id=topic.id,
        ),
        await Article.objects.create(
            db_session, title="Draft notes", slug="draft-notes", status="draft"
        ),
        await Article.objects.create(
            db_session,
            title="Sports day",
            slug="sports-day",
            status="published",
            summary="Field games",
        ),
    ]
    await db_session.commit()
    return rows


class TestQuerySetChaining:
    async def test_filter_is_immutable(self, db_session, articles):
        base = Article.objects.all()
        published = base.filter(status="published")

        assert await base.count(db_session) == 3
        assert await published.count(db_session) == 2

    async def test_filter_none_keyword_means_is_null(self, db_session, articles):
        untagged = await Article.objects.filter(topic_id=None).fetch(db_session)
        assert {a.slug for a in untagged} == {"draft-notes", "sports-day"}

    async def test_filter_unknown_field_raises(self):
        with pytest.raises(ValueError, match="has no field 'nope'"):
            Article.objects.filter(nope=1)

    async def test_exclude_negates(self, db_session, articles):
        rows = await Article.objects.exclude(status="published").fetch(db_session)
        assert [a.slug for a in rows] == ["draft-notes"]

    async def test_search_is_case_insensitive_over_columns(self, db_session, articles):
        qs = Article.objects.search("GAMES", "title", "summary")
        assert [a.slug for a in await qs.fetch(db_session)] == ["sports-day"]

    async def test_search_matches_wildcards_literally(self, db_session, articles):
        qs = Article.objects.search("100%", Article.summary)
        assert [a.slug for a in await qs.fetch(db_session)] == ["open-day"]

        qs = Article.objects.search("_", Article.summary)
        assert await qs.count(db_session) == 0

    async def test_blank_search_is_ignored(self, db_session, articles):
        assert await Article.objects.search("", "title").count(db_session) == 3

    async def test_none_matches_nothing(self, db_session, articles):
        assert await Article.objects.all().none().count(db_session) == 0

    async def test_order_by_descending_string(self, db_session, articles):
        rows = await Article.objects.order_by("-title").fetch(db_session)
        assert [a.title for a in rows] == ["Sports day", "Open day", "Draft notes"]

    async def test_limit_and_offset(self, db_session, articles):
        rows = await Article.objects.order_by("title").offset(1).limit(1).fetch(
            db_session
        )
        assert [a.title for a in rows] == ["Open day"]

    async def test_count_ignores_paging(self, db_session, articles):
        qs = Article.objects.filter(status="published").limit(1)
        assert await qs.count(db_session) == 2

    async def test_select_related_loads_relationship(self, db_session, articles):
        article = await Article.objects.filter(slug="open-day").select_related(
            "topic"
        ).first(db_session)
        assert article is not None
        assert article.topic.name == "School"

    async def test_prefetch_related_loads_collection(self, db_session, articles):
        topic = await Topic.objects.all().prefetch_related("articles").first(
            db_session
        )
        assert topic is not None
        assert [a.slug for a in topic.articles] == ["open-day"]

    async def test_annotate_attaches_values(self, db_session, articles):
        article_count = (
            select(func.count(Article.id))
            .where(Article.topic_id == Topic.id)
            .scalar_subquery()
        )
        topic = await Topic.objects.annotate(article_count=article_count).first(
            db_session
        )
        assert topic is not None
        assert topic.article_count == 1

    async def test_populate_existing_refreshes_identity_map(self, db_session, articles):
        async with get_session_factory()() as other:
            await other.execute(
                update(Article).where(Article.slug == "open-day").values(title="Moved")
            )
            await other.commit()

        stale = await Article.objects.get(db_session, slug="open-day")
        assert stale.title == "Open day"

        fresh = await Article.objects.filter(slug="open-day").populate_existing().first(
            db_session
        )
        assert fresh is stale
        assert fresh.title == "Moved"


class TestQuerySetDelete:
    async def test_delete_requires_filters(self, db_session, articles):
        with pytest.raises(ValueError, match="Refusing to delete"):
            await Article.objects.all().delete(db_session)

    async def test_delete_removes_matches(self, db_session, articles):
        deleted = await Article.objects.filter(status="draft").delete(db_session)
        await db_session.commit()

        assert deleted == 1
        assert await Article.objects.all().count(db_session) == 2
