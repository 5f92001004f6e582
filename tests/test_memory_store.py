"""
Tests for the in-memory Model handle and the shared query/entity base.
"""
import pytest
from bson import ObjectId
from pydantic import ValidationError

from restbind.store import InMemoryModel, PopulateDirective
from restbind.store.memory import matches, project, sort_documents


class TestMatches:
    """Tests for predicate evaluation."""

    DOC = {"name": "apple", "price": 2, "tags": ["fruit", "red"], "meta": {"origin": "NZ"}}

    @pytest.mark.parametrize(
        "predicate,expected",
        [
            ({}, True),
            ({"name": "apple"}, True),
            ({"name": "pear"}, False),
            ({"tags": "red"}, True),
            ({"meta.origin": "NZ"}, True),
            ({"price": {"$gt": 1, "$lte": 2}}, True),
            ({"price": {"$lt": 2}}, False),
            ({"price": {"$ne": 2}}, False),
            ({"name": {"$in": ["apple", "pear"]}}, True),
            ({"name": {"$nin": ["apple"]}}, False),
            ({"missing": {"$exists": False}}, True),
            ({"missing": None}, True),
            ({"name": {"$regex": "^AP", "$options": "i"}}, True),
            ({"tags": {"$size": 2}}, True),
            ({"tags": {"$all": ["red", "fruit"]}}, True),
            ({"name": {"$not": {"$regex": "^a"}}}, False),
            ({"$or": [{"name": "pear"}, {"price": 2}]}, True),
            ({"$and": [{"name": "apple"}, {"price": 3}]}, False),
            ({"$nor": [{"name": "pear"}]}, True),
        ],
    )
    def test_matches(self, predicate, expected):
        assert matches(self.DOC, predicate) is expected

    def test_elem_match(self):
        doc = {"variants": [{"size": "S", "stock": 0}, {"size": "L", "stock": 3}]}

        assert matches(doc, {"variants": {"$elemMatch": {"size": "L", "stock": {"$gt": 0}}}})
        assert not matches(doc, {"variants": {"$elemMatch": {"size": "S", "stock": {"$gt": 0}}}})


class TestSortAndProject:
    def test_sort_multiple_keys(self):
        docs = [
            {"name": "b", "price": 1},
            {"name": "a", "price": 2},
            {"name": "c", "price": 1},
            {"name": "d"},
        ]

        ordered = sort_documents(docs, [("price", -1), ("name", 1)])

        assert [d["name"] for d in ordered] == ["a", "b", "c", "d"]

    def test_inclusion_projection(self):
        doc = {"_id": 1, "name": "apple", "price": 2, "meta": {"origin": "NZ", "lot": 7}}

        assert project(doc, {"name": 1, "meta.origin": 1}, "_id") == {
            "_id": 1,
            "name": "apple",
            "meta": {"origin": "NZ"},
        }

    def test_exclusion_projection(self):
        doc = {"_id": 1, "name": "apple", "price": 2}

        assert project(doc, {"price": 0, "_id": 0}, "_id") == {"name": "apple"}


class TestInMemoryModel:
    """Tests for queries and entities over InMemoryModel."""

    @pytest.mark.asyncio
    async def test_find_with_sort_skip_limit(self, items_model, sample_items):
        items_model.seed(sample_items)

        entities = await items_model.find({}).sort("-price").skip(1).limit(1).exec()

        assert [e["name"] for e in entities] == ["bread"]

    @pytest.mark.asyncio
    async def test_find_one_by_string_id(self, items_model, sample_items):
        ids = items_model.seed(sample_items)

        entity = await items_model.find_one({"_id": str(ids[1])}).exec()

        assert isinstance(entity.id, ObjectId)
        assert entity["name"] == "bread"

    @pytest.mark.asyncio
    async def test_find_one_missing_returns_none(self, items_model):
        assert await items_model.find_one({"_id": "nope"}).exec() is None

    @pytest.mark.asyncio
    async def test_select(self, items_model, sample_items):
        items_model.seed(sample_items)

        entities = await items_model.find({"name": "apple"}).select("name").exec()

        assert set(entities[0].to_dict()) == {"_id", "name"}

    @pytest.mark.asyncio
    async def test_save_new_validates_and_assigns_id(self, items_model):
        entity = items_model.new({"name": "donut", "price": 2})

        saved = await entity.save()

        assert isinstance(saved.id, ObjectId)
        assert saved.to_dict()["tags"] == []
        assert len(items_model) == 1

    @pytest.mark.asyncio
    async def test_save_invalid_raises_validation_error(self, items_model):
        entity = items_model.new({"price": -1})

        with pytest.raises(ValidationError):
            await entity.save()
        assert len(items_model) == 0

    @pytest.mark.asyncio
    async def test_update_and_remove(self, items_model, sample_items):
        ids = items_model.seed(sample_items)
        entity = await items_model.find_by_id(str(ids[0])).exec()

        entity.set({"price": 9, "_id": "ignored"})
        await entity.save()

        stored = await items_model.find_by_id(ids[0]).exec()
        assert stored["price"] == 9
        assert stored.id == ids[0]

        await stored.remove()
        assert len(items_model) == 2

    @pytest.mark.asyncio
    async def test_where_narrows(self, items_model, sample_items):
        items_model.seed(sample_items)

        entities = await items_model.find({"tags": "fruit"}).where({"price": {"$gt": 2}}).exec()

        assert [e["name"] for e in entities] == ["cherry"]


class TestPopulate:
    """Tests for reference population."""

    @pytest.mark.asyncio
    async def test_populate_single_reference(self, items_model, owners_model):
        owner_id = owners_model.seed([{"name": "ann", "email": "ann@test"}])[0]
        items = InMemoryModel("items", schema=items_model.schema, refs={"owner": owners_model})
        items.seed([{"name": "apple", "owner": owner_id}])

        entity = await items.find_one({}).populate("owner", "name").exec()

        assert entity["owner"] == {"_id": owner_id, "name": "ann"}

    @pytest.mark.asyncio
    async def test_populate_with_match_drops_non_matching(self, items_model, owners_model):
        ids = owners_model.seed([{"name": "ann"}, {"name": "bob"}])
        items = items_model
        items.seed([{"name": "basket", "owner": ids}])
        directive = PopulateDirective(model=owners_model, match={"name": "bob"})

        entity = await items.find_one({}).populate(
            "owner", directive.select, directive.model, directive.match
        ).exec()

        assert [o["name"] for o in entity["owner"]] == ["bob"]

    def test_populate_without_model_fails(self, items_model):
        with pytest.raises(ValueError):
            items_model.find({}).populate("owner")
