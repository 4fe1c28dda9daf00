from linksy.search import (
    NO_NEEDS_MESSAGE,
    compose_message,
    match_needs,
    rank_by_distance,
    select_ring,
    tokenize,
)

NEEDS = [
    {"need_id": "n1", "name": "Food Pantry", "synonyms": ["groceries", "hungry"], "category_id": "c1"},
    {"need_id": "n2", "name": "Rent Assistance", "synonyms": ["eviction"], "category_id": "c2"},
    {"need_id": "n3", "name": "Utility Help", "synonyms": [], "category_id": "c2", "is_active": False},
]
CATEGORIES = {"c1": {"name": "Food"}, "c2": {"name": "Housing"}}

NASHVILLE = {"lat": 36.1627, "lng": -86.7816}


def test_tokenize_drops_stop_words():
    assert tokenize("I need help with my rent!") == ["rent"]


def test_match_needs_scores_phrase_and_tokens():
    matched = match_needs("I am hungry and need groceries", NEEDS, categories_by_id=CATEGORIES)
    assert [x["need_id"] for x in matched] == ["n1"]
    assert matched[0]["score"] >= 3


def test_match_needs_uses_category_vocabulary_and_skips_inactive():
    matched = match_needs("housing utility", NEEDS, categories_by_id=CATEGORIES)
    assert [x["need_id"] for x in matched] == ["n2"]
    assert match_needs("spaceship", NEEDS) == []


def test_select_ring_widens_until_two_providers():
    providers = [{"provider_id": "near"}, {"provider_id": "mid"}, {"provider_id": "far"}]
    locations = {
        "near": [{"latitude": 36.17, "longitude": -86.78}],
        "mid": [{"latitude": 36.40, "longitude": -86.78}],
        "far": [{"latitude": 38.00, "longitude": -86.78}],
    }
    ids, ring = select_ring(NASHVILLE, providers, locations)
    assert ring == 25
    assert ids == ["near", "mid"]


def test_select_ring_keeps_single_nearest_ring():
    providers = [{"provider_id": "near"}, {"provider_id": "nowhere"}]
    locations = {"near": [{"latitude": 36.17, "longitude": -86.78}], "nowhere": []}
    ids, ring = select_ring(NASHVILLE, providers, locations)
    assert ids == ["near"]
    assert ring == 10


def test_rank_by_distance_puts_ungeocoded_last():
    providers = [{"provider_id": "a"}, {"provider_id": "b"}, {"provider_id": "c"}]
    locations = {
        "a": [{"latitude": 36.50, "longitude": -86.78}],
        "b": [{"latitude": 36.17, "longitude": -86.78, "is_primary": True}],
        "c": [],
    }
    ranked = rank_by_distance(providers, locations, NASHVILLE)
    assert [x["provider_id"] for x in ranked] == ["b", "a", "c"]
    assert ranked[2]["distance"] is None


def test_compose_message_variants():
    needs = [{"name": "Food Pantry"}]
    one = compose_message("food", needs, [{"provider_id": "a"}], has_location=True, radius_miles=10)
    assert one.startswith("I found 1 organization that can help with Food Pantry.")
    assert "within 10 miles" in one
    wider = compose_message("food", needs, [{}, {}], has_location=True, radius_miles=None)
    assert "wider area" in wider
    none = compose_message("food", needs, [], has_location=False, radius_miles=None)
    assert "contact 211" in none
    assert "couldn't find" in NO_NEEDS_MESSAGE
