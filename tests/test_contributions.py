import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from contributions import ContributionService
from database import PROJECT_LINKS
from errors import AccessDenied, InternalError, InvalidReference, NotFound, ValidationError

AUTHOR = "user-1"
OTHER = "user-2"


@pytest.fixture
def contributions(db):
    return ContributionService(db, campaign_goal=4000, campaign_tools=["Claude", "Bolt", "Lovable"])


@pytest.fixture
def idea(make_idea):
    return make_idea()


def submit(contributions, idea, actor=AUTHOR, **fields):
    fields.setdefault("title", "My quiz app")
    fields.setdefault("url", "https://example.com/quiz")
    return contributions.submit(actor, str(idea["_id"]), **fields)["data"]


class TestSubmit:
    def test_creates_and_bumps_counter(self, contributions, idea, counter, db):
        project = submit(contributions, idea, description="Built over a weekend", tools_used=["Claude"])

        assert project["user_id"] == AUTHOR
        assert project["idea_id"] == str(idea["_id"])
        assert project["tools_used"] == ["Claude"]
        assert counter(idea, "project_count") == 1
        assert isinstance(db[PROJECT_LINKS].find_one()["url"], str)

    def test_defaults(self, contributions, idea):
        project = submit(contributions, idea)
        assert project["description"] is None
        assert project["tools_used"] == []

    def test_missing_idea(self, contributions, db):
        with pytest.raises(InvalidReference):
            contributions.submit(AUTHOR, str(ObjectId()), "Title", "https://example.com")
        assert db[PROJECT_LINKS].count_documents({}) == 0

    @pytest.mark.parametrize(
        "fields",
        [
            {"url": "ftp://example.com/file"},
            {"url": "not a url"},
            {"title": "   "},
            {"title": "x" * 256},
            {"description": "x" * 2001},
        ],
    )
    def test_invalid_fields(self, contributions, idea, fields):
        with pytest.raises(ValidationError):
            submit(contributions, idea, **fields)


class TestUpdate:
    def test_partial_update(self, contributions, idea):
        project = submit(contributions, idea)
        updated = contributions.update(AUTHOR, project["id"], title="Renamed")["data"]

        assert updated["title"] == "Renamed"
        assert updated["url"] == "https://example.com/quiz"

    def test_description_can_be_cleared(self, contributions, idea):
        project = submit(contributions, idea, description="Old notes")
        updated = contributions.update(AUTHOR, project["id"], description=None)["data"]
        assert updated["description"] is None

    def test_requires_a_field(self, contributions, idea):
        project = submit(contributions, idea)
        with pytest.raises(ValidationError):
            contributions.update(AUTHOR, project["id"])

    def test_null_title_is_not_an_update(self, contributions, idea):
        project = submit(contributions, idea)
        with pytest.raises(ValidationError):
            contributions.update(AUTHOR, project["id"], title=None)

    def test_other_user_is_denied(self, contributions, idea):
        project = submit(contributions, idea)
        with pytest.raises(AccessDenied):
            contributions.update(OTHER, project["id"], title="Mine now")

    def test_unknown_project(self, contributions):
        with pytest.raises(NotFound):
            contributions.update(AUTHOR, str(ObjectId()), title="Ghost")

    @pytest.mark.parametrize("url", ["ftp://example.com/file", "example.com", None])
    def test_url_must_stay_http(self, contributions, idea, url):
        project = submit(contributions, idea)
        with pytest.raises(ValidationError):
            contributions.update(AUTHOR, project["id"], url=url)

    def test_url_is_stored_as_text(self, contributions, idea, db):
        project = submit(contributions, idea)
        contributions.update(AUTHOR, project["id"], url="https://example.com/v2")

        stored = db[PROJECT_LINKS].find_one({"_id": ObjectId(project["id"])})
        assert stored["url"] == "https://example.com/v2"


class TestDelete:
    def test_author_deletes(self, contributions, idea, counter, db):
        project = submit(contributions, idea)
        submit(contributions, idea)

        assert contributions.delete(AUTHOR, project["id"])["success"] is True
        assert counter(idea, "project_count") == 1
        assert db[PROJECT_LINKS].count_documents({"idea_id": idea["_id"]}) == 1

    def test_other_user_is_denied(self, contributions, idea, counter):
        project = submit(contributions, idea)
        with pytest.raises(AccessDenied):
            contributions.delete(OTHER, project["id"])
        assert counter(idea, "project_count") == 1

    def test_counter_floor(self, contributions, idea, counter, db):
        project = submit(contributions, idea)
        db["idea"].update_one({"_id": idea["_id"]}, {"$set": {"project_count": 0}})

        contributions.delete(AUTHOR, project["id"])
        assert counter(idea, "project_count") == 0


class TestListings:
    def test_for_idea_newest_first(self, contributions, make_idea):
        idea = make_idea()
        elsewhere = make_idea("Elsewhere")
        submit(contributions, idea, title="First")
        submit(contributions, idea, title="Second")
        submit(contributions, elsewhere, title="Unrelated")

        response = contributions.list_for_idea(str(idea["_id"]))

        assert [p["title"] for p in response["data"]] == ["Second", "First"]
        assert response["count"] == 2

    def test_for_user_includes_idea_title(self, contributions, make_idea):
        idea = make_idea("Recipe Remix")
        submit(contributions, idea)
        submit(contributions, idea, actor=OTHER)

        response = contributions.list_for_user(AUTHOR)

        assert response["count"] == 1
        assert response["data"][0]["idea_title"] == "Recipe Remix"


class TestStats:
    def test_empty(self, contributions):
        data = contributions.stats()["data"]
        assert data["total_projects"] == 0
        assert data["progress_percentage"] == 0
        assert data["tools"]["breakdown"] == {"claude": 0, "bolt": 0, "lovable": 0, "other": 0}
        assert data["categories"] == {}

    def test_aggregates_live_rows(self, contributions, make_idea, db):
        edu = make_idea("Edu", category="Education")
        fin = make_idea("Fin", category="Finance")
        submit(contributions, edu, tools_used=["Claude", "bolt"])
        submit(contributions, edu, tools_used=[" CLAUDE ", "Cursor"])
        submit(contributions, fin, tools_used=["Lovable", "cursor", "v0"])
        # Cached counters drifting does not affect statistics
        db["idea"].update_many({}, {"$set": {"project_count": 99}})

        data = contributions.stats()["data"]

        assert data["total_projects"] == 3
        assert data["campaign_goal"] == 4000
        assert data["progress_percentage"] == pytest.approx(0.075)
        assert data["tools"]["all_tools"] == {"claude": 2, "bolt": 1, "cursor": 2, "lovable": 1, "v0": 1}
        assert data["tools"]["breakdown"] == {"claude": 2, "bolt": 1, "lovable": 1, "other": 3}
        assert data["categories"] == {"Education": 2, "Finance": 1}


def failing(*args, **kwargs):
    raise ServerSelectionTimeoutError("store unreachable")


class TestStoreFailures:
    def test_submit_applies_nothing(self, contributions, idea, db, counter, monkeypatch):
        monkeypatch.setattr(contributions.projects, "insert_one", failing)

        with pytest.raises(InternalError):
            submit(contributions, idea)
        assert db[PROJECT_LINKS].count_documents({}) == 0
        assert counter(idea, "project_count") == 0

    def test_delete_applies_nothing(self, contributions, idea, db, counter, monkeypatch):
        project = submit(contributions, idea)
        monkeypatch.setattr(contributions.projects, "delete_one", failing)

        with pytest.raises(InternalError):
            contributions.delete(AUTHOR, project["id"])
        assert db[PROJECT_LINKS].count_documents({}) == 1
        assert counter(idea, "project_count") == 1
