from main import fuzzy_ratio


def test_fuzzy_ratio_scores_similar_descriptions():
    assert fuzzy_ratio("nebulonx", "nebulon-x") >= 60
    assert fuzzy_ratio("aurelia", "aurelian") >= 60
    assert fuzzy_ratio("black white", "white black") == 100
    assert fuzzy_ratio("", "beagle") == 0


def test_matches_endpoint_ranks_similar_posts(client, login_as):
    login_as("user")
    base = {
        "postType": "wounded",
        "petName": "Unknown",
        "description": "Seen limping",
        "location": {"address": "Plaza", "city": "Manila"},
    }

    def create(title, pet_type, breed, color):
        r = client.post("/api/posts", json={**base, "title": title, "petType": pet_type, "petBreed": breed, "petColor": color})
        assert r.status_code == 201, r.text
        return r.json()["data"]["id"]

    lost = create("Lost labrador", "Dog", "Labrador Retriever", "Black")
    close = create("Found lab", "Dog", "Labrador", "Black")
    create("Found poodle", "Dog", "Poodle", "White")
    create("Found black cat", "Cat", "Labrador", "Black")

    r = client.get(f"/api/posts/{lost}/matches")
    assert r.status_code == 200
    data = r.json()["data"]
    assert [m["id"] for m in data] == [close]
    assert data[0]["score"] >= 60
