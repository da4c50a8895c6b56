"""Unit tests for field-name translation at the storage boundary"""
from healthquest.db.casing import (
    keys_to_camel,
    keys_to_snake,
    names_to_snake,
    to_camel_case,
    to_snake_case,
)


class TestNameTranslation:

    def test_to_snake_case(self):
        assert to_snake_case("userId") == "user_id"
        assert to_snake_case("distanceTravelled") == "distance_travelled"
        assert to_snake_case("points") == "points"

    def test_to_camel_case(self):
        assert to_camel_case("recommendation_id") == "recommendationId"
        assert to_camel_case("is_completed") == "isCompleted"
        assert to_camel_case("goal") == "goal"

    def test_dict_keys(self):
        assert keys_to_snake({"userId": "u", "heartRate": 72}) == {"user_id": "u", "heart_rate": 72}
        assert keys_to_camel({"user_id": "u", "created_at": None}) == {"userId": "u", "createdAt": None}

    def test_empty_inputs(self):
        assert keys_to_snake(None) == {}
        assert keys_to_camel({}) == {}
        assert names_to_snake(None) is None
        assert names_to_snake(["userId", "isCompleted"]) == ["user_id", "is_completed"]
