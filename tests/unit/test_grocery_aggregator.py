"""Unit tests for grocery list aggregation and rendering."""
import copy

import pytest

from grocery_aggregator import (
    aggregate_grocery_list,
    aggregate_ingredients,
    categorize,
    refresh_grocery_list,
    render_mass,
    render_volume,
)
from ingredient_parser import parse_ingredient, unit_family
from tests.fixtures.plans import make_meal, make_plan


def _plan_with_ingredients(*meals_ingredients):
    """One day whose meals carry the given ingredient lists."""
    slots = ["breakfast", "lunch", "dinner"]
    meals = {"snacks": []}
    for slot, ingredients in zip(slots, meals_ingredients):
        meals[slot] = make_meal(slot.title(), ingredients, 500, 20, 50, 10)
    return {"days": [{"day": 1, "meals": meals}], "groceryList": {}}


@pytest.mark.priority_high
@pytest.mark.unit
class TestAggregation:
    """Summing and consolidating ingredient quantities."""

    def test_same_ingredient_in_two_meals_sums_to_one_entry(self):
        plan = _plan_with_ingredients(["2 tbsp olive oil"], ["2 tbsp olive oil"])
        grocery = aggregate_grocery_list(plan)

        assert grocery == {"pantry": ["4 tbsp olive oil"]}

    def test_volume_and_mass_of_same_name_stay_separate(self):
        plan = _plan_with_ingredients(["1 cup spinach"], ["100 g spinach"])
        items = [i for i in aggregate_ingredients(plan) if i.canonical_name == "spinach"]

        assert sorted(i.base_unit for i in items) == ["g", "ml"]

    def test_cooked_grain_is_converted_to_dry(self):
        plan = _plan_with_ingredients(["1 cup cooked chickpeas"])
        (item,) = aggregate_ingredients(plan)

        assert item.canonical_name == "chickpeas"
        assert item.base_unit == "ml"
        assert item.total_base_amount == pytest.approx(240 * 0.33)

    def test_dry_cup_measured_goods_are_weighed(self):
        plan = _plan_with_ingredients(["1 cup rolled oats"], ["1 cup rolled oats"])
        (item,) = aggregate_ingredients(plan)

        assert item.base_unit == "g"
        assert item.line == "180 g rolled oats"

    def test_water_and_to_taste_are_excluded(self):
        plan = _plan_with_ingredients(["2 cups water", "salt to taste", "1 tbsp olive oil"])
        names = [i.canonical_name for i in aggregate_ingredients(plan)]

        assert names == ["olive oil"]

    def test_plural_and_singular_counts_merge(self):
        plan = _plan_with_ingredients(["2 eggs"], ["1 egg"])
        (item,) = aggregate_ingredients(plan)

        assert item.base_unit == "count"
        assert item.total_base_amount == 3

    def test_named_count_units_keep_their_word(self):
        plan = _plan_with_ingredients(["2 cloves garlic"], ["1 clove garlic"])
        (item,) = aggregate_ingredients(plan)

        assert item.line == "3 cloves garlic"

    def test_aggregation_is_idempotent(self):
        plan = make_plan(days=3)
        once = refresh_grocery_list(copy.deepcopy(plan))
        twice = refresh_grocery_list(copy.deepcopy(once))

        assert once["groceryList"] == twice["groceryList"]

    def test_refresh_replaces_model_grocery_list(self):
        plan = _plan_with_ingredients(["150 g tofu"])
        plan["groceryList"] = {"dairy": ["tofu", "cooked quinoa"]}

        refresh_grocery_list(plan)

        assert plan["groceryList"] == {"protein": ["150 g tofu"]}

    def test_empty_plan(self):
        assert aggregate_grocery_list({"days": []}) == {}
        assert aggregate_grocery_list({}) == {}


@pytest.mark.unit
class TestRendering:
    """Base-unit amounts rendered as shopping quantities."""

    @pytest.mark.parametrize(
        "ml,expected",
        [
            (60, "4 tbsp"),
            (240, "1 cup"),
            (255, "1 cup + 1 tbsp"),
            (485, "2 cups + 1 tsp"),
            (10, "2 tsp"),
            (15, "1 tbsp"),
            (3, "3 ml"),
        ],
    )
    def test_render_volume(self, ml, expected):
        assert render_volume(ml) == expected

    @pytest.mark.parametrize(
        "grams,name,expected",
        [
            (1200, "chicken breast", "1 kg 200 g"),
            (2000, "potatoes", "2 kg"),
            (5, "cumin powder", "1 packet"),
            (5, "walnuts", "10 g"),
            (143, "paneer", "150 g"),
        ],
    )
    def test_render_mass(self, grams, name, expected):
        assert render_mass(grams, name) == expected

    def test_unit_family_preserved_through_round_trip(self):
        plan = _plan_with_ingredients(["2 tbsp olive oil", "200 g paneer", "3 eggs"])
        for item in aggregate_ingredients(plan):
            reparsed = parse_ingredient(item.line)
            expected = {"ml": "volume", "g": "mass", "count": "count"}[item.base_unit]
            assert unit_family(reparsed.unit) == expected


@pytest.mark.unit
class TestCategorize:
    """Shopping section assignment."""

    @pytest.mark.parametrize(
        "name,category",
        [
            ("almond butter", "pantry"),
            ("almond milk", "dairy"),
            ("chicken breast", "protein"),
            ("cherry tomatoes", "produce"),
            ("garam masala", "spices"),
            ("green tea", "beverages"),
            ("mystery ingredient", "pantry"),
        ],
    )
    def test_categorize(self, name, category):
        assert categorize(name) == category
