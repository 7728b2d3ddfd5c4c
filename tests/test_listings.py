from fastapi.testclient import TestClient

import main


def vet_payload(**overrides):
    data = {
        "clinicName": "Paws & Claws Clinic",
        "specialization": ["emergency", "surgery"],
        "services": ["X-ray", "Vaccination"],
        "location": {"coordinates": [120.9842, 14.5995], "address": "12 Taft Ave", "city": "Manila", "state": "NCR"},
        "contactInfo": {"phone": "+63 2 555 0100", "emergencyPhone": "+63 917 000 0000"},
        "operatingHours": {"monday": {"open": "08:00", "close": "18:00"}},
        "isEmergencyAvailable": True,
        "is24Hours": False,
    }
    data.update(overrides)
    return data


def login(make_user, role):
    c = TestClient(main.app)
    user = make_user(role=role)
    r = c.post("/api/auth/login", json={"email": user["email"], "password": "Passw0rd1"})
    assert r.status_code == 200
    return c, user


def test_vet_directory_is_vet_only(client, login_as):
    login_as("user")
    r = client.post("/api/vet-directory", json=vet_payload())
    assert r.status_code == 403
    assert r.json()["message"] == "Vet access required"


def test_vet_creates_entry(client, login_as):
    vet = login_as("vet")
    r = client.post("/api/vet-directory", json={**vet_payload(), "vetId": "someone-else", "isVerified": True})
    assert r.status_code == 201
    entry = r.json()["data"]
    assert entry["vetId"] == str(vet["_id"])
    assert entry["isVerified"] is False
    assert entry["rating"] == 0

    r = client.post("/api/vet-directory", json=vet_payload(operatingHours={"funday": {"open": "09:00"}}))
    assert r.status_code == 400
    r = client.post("/api/vet-directory", json=vet_payload(contactInfo={}))
    assert r.status_code == 400


def test_vet_directory_filters(client, login_as, db):
    login_as("vet")
    client.post("/api/vet-directory", json=vet_payload())
    client.post("/api/vet-directory", json=vet_payload(
        clinicName="Cebu Animal Care",
        specialization=["dental"],
        isEmergencyAvailable=False,
        location={"coordinates": [123.8854, 10.3157], "address": "Osmena Blvd", "city": "Cebu City", "state": "Cebu"},
    ))
    client.post("/api/vet-directory", json=vet_payload(clinicName="All Night Vets", is24Hours=True))

    r = client.get("/api/vet-directory", params={"specialization": "dental"})
    assert [e["clinicName"] for e in r.json()["data"]] == ["Cebu Animal Care"]

    r = client.get("/api/vet-directory", params={"city": "manila"})
    assert r.json()["count"] == 2

    r = client.get("/api/vet-directory", params={"longitude": 120.98, "latitude": 14.6, "distance": 10})
    assert sorted(e["clinicName"] for e in r.json()["data"]) == ["All Night Vets", "Paws & Claws Clinic"]

    r = client.get("/api/vet-directory/emergency")
    assert [e["clinicName"] for e in r.json()["data"]][0] == "All Night Vets"
    assert "Cebu Animal Care" not in [e["clinicName"] for e in r.json()["data"]]


def test_admin_verifies_and_deletes_vet_entry(client, login_as, make_user):
    login_as("vet")
    entry_id = client.post("/api/vet-directory", json=vet_payload()).json()["data"]["id"]

    admin_client, _ = login(make_user, "admin")
    r = admin_client.put(f"/api/admin/vet-directory/{entry_id}", json={"isVerified": True})
    assert r.status_code == 200
    assert r.json()["data"]["isVerified"] is True
    assert admin_client.delete(f"/api/admin/vet-directory/{entry_id}").status_code == 200
    assert client.get("/api/vet-directory").json()["data"] == []


def adoption_payload(**overrides):
    data = {
        "petName": "Mochi",
        "petType": "Cat",
        "petBreed": "Puspin",
        "description": "Calm indoor cat",
        "adoptionType": "permanent",
        "adoptionFee": 0,
        "isVaccinated": True,
        "temperament": ["calm", "affectionate"],
        "goodWith": {"children": True},
        "location": {"address": "Blk 4", "city": "Pasig", "state": "NCR"},
    }
    data.update(overrides)
    return data


def test_adoption_create_and_list(client, login_as):
    user = login_as("user")
    r = client.post("/api/adoption", json=adoption_payload())
    assert r.status_code == 201
    listing = r.json()["data"]
    assert listing["status"] == "available"
    assert listing["userId"] == str(user["_id"])
    assert listing["goodWith"]["otherDogs"] is False

    client.post("/api/adoption", json=adoption_payload(petName="Rex", petType="Dog", adoptionType="senior"))

    r = client.get("/api/adoption", params={"type": "senior"})
    assert [a["petName"] for a in r.json()["data"]] == ["Rex"]
    r = client.get("/api/adoption", params={"city": "pasig"})
    assert r.json()["pagination"]["total"] == 2

    r = client.get(f"/api/adoption/{listing['id']}")
    assert r.status_code == 200
    assert r.json()["data"]["owner"]["id"] == str(user["_id"])


def test_adoption_required_fields(client, login_as):
    assert client.post("/api/adoption", json=adoption_payload()).status_code == 401
    login_as("user")
    payload = adoption_payload()
    del payload["adoptionType"]
    r = client.post("/api/adoption", json=payload)
    assert r.status_code == 400
    assert "adoptionType" in r.json()["message"]
    assert client.post("/api/adoption", json=adoption_payload(adoptionFee=-5)).status_code == 400


def foster_payload(**overrides):
    data = {
        "petName": "Kiko",
        "petType": "Dog",
        "description": "Recovering from surgery",
        "fosterType": "emergency",
        "duration": "2 weeks",
        "startDate": "2024-06-01T00:00:00",
        "isUrgent": True,
    }
    data.update(overrides)
    return data


def test_foster_create_and_list(client, login_as, make_user):
    login_as("user")
    r = client.post("/api/foster", json=foster_payload())
    assert r.status_code == 201
    listing = r.json()["data"]
    assert listing["status"] == "pending"

    client.post("/api/foster", json=foster_payload(petName="Ming", petType="Cat", isUrgent=False, fosterType="long-term"))
    r = client.get("/api/foster", params={"isUrgent": "true"})
    assert [f["petName"] for f in r.json()["data"]] == ["Kiko"]

    payload = foster_payload()
    del payload["startDate"]
    r = client.post("/api/foster", json=payload)
    assert r.status_code == 400
    assert "startDate" in r.json()["message"]

    r = client.post("/api/foster", json=foster_payload(endDate="2024-05-01T00:00:00"))
    assert r.status_code == 400

    admin_client, _ = login(make_user, "admin")
    assert admin_client.delete(f"/api/admin/foster/{listing['id']}").status_code == 200
    assert client.get(f"/api/foster/{listing['id']}").status_code == 404


def test_admin_deletes_adoption(client, login_as, make_user):
    login_as("user")
    listing_id = client.post("/api/adoption", json=adoption_payload()).json()["data"]["id"]
    assert client.delete(f"/api/admin/adoption/{listing_id}").status_code == 403

    admin_client, _ = login(make_user, "admin")
    assert admin_client.delete(f"/api/admin/adoption/{listing_id}").status_code == 200
    assert client.get(f"/api/adoption/{listing_id}").status_code == 404
