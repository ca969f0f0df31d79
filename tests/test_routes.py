from bson import ObjectId

import config
from conftest import VEHICLE, auth, signed_return, trip_payload
from services import trip_service


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_vehicle_types_are_public(client):
    res = client.get("/api/trips/vehicle-types")
    assert res.status_code == 200
    assert {"type": "car", "base_rate": 10000} in res.json()["data"]


def test_missing_identity_is_401(client):
    assert client.get("/api/trips/my-trips").status_code == 401
    assert client.get("/api/trips/my-trips", headers={"X-User-ID": str(ObjectId())}).status_code == 401


def test_create_trip(client, passenger):
    res = client.post("/api/trips/", json=trip_payload(available_seats=2), headers=auth(passenger))

    assert res.status_code == 201
    body = res.json()
    assert body["data"]["status"] == "pending_driver"
    assert body["data"]["requested_by"] == str(passenger["_id"])
    assert body["data"]["available_seats"] == 2
    assert body["pricing"]["estimated_price"] > 0
    assert body["pricing"]["max_price"] >= body["pricing"]["estimated_price"]


def test_driver_cannot_create_trip(client, driver_a):
    assert client.post("/api/trips/", json=trip_payload(), headers=auth(driver_a)).status_code == 403


def test_invalid_coordinates_rejected(client, passenger):
    bad = trip_payload(start_location={"address": "Nowhere", "coordinates": {"lat": 95, "lng": 106}})
    assert client.post("/api/trips/", json=bad, headers=auth(passenger)).status_code == 422


def test_estimate_price_uses_driver_vehicle(client, driver_a):
    payload = {k: v for k, v in trip_payload().items() if k != "preferred_vehicle_type"}
    res = client.post("/api/trips/estimate-price", json=payload, headers=auth(driver_a))

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["vehicle_type"] == "car"
    assert data["estimated_price"] % 1000 == 0
    assert data["distance"] == data["breakdown"]["distance_in_km"]


def test_trip_lookup_errors(client, passenger):
    assert client.get("/api/trips/not-an-id", headers=auth(passenger)).status_code == 400
    res = client.get(f"/api/trips/{ObjectId()}", headers=auth(passenger))
    assert res.status_code == 404
    assert res.json() == {"detail": "Trip not found"}


def test_bid_and_accept_flow(client, passenger, driver_a, driver_b, make_trip):
    trip = make_trip(max_price=90000)
    trip_id = str(trip["_id"])

    res = client.post(f"/api/trips/{trip_id}/driver-request",
                      json={"proposed_price": 70000, "message": "On my way"}, headers=auth(driver_a))
    assert res.status_code == 200
    request_id = res.json()["data"]["request"]["id"]

    too_high = client.post(f"/api/trips/{trip_id}/driver-request",
                           json={"proposed_price": 90001}, headers=auth(driver_b))
    assert too_high.status_code == 400

    again = client.post(f"/api/trips/{trip_id}/driver-request",
                        json={"proposed_price": 60000}, headers=auth(driver_a))
    assert again.status_code == 400

    open_trips = client.get("/api/trips/", params={"role": "driver"}, headers=auth(driver_b)).json()
    assert open_trips["total"] == 1

    wrong_actor = client.patch(f"/api/trips/{trip_id}/driver-requests/{request_id}",
                               json={"action": "accept"}, headers=auth(driver_a))
    assert wrong_actor.status_code == 403

    res = client.patch(f"/api/trips/{trip_id}/driver-requests/{request_id}",
                       json={"action": "accept"}, headers=auth(passenger))
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["needs_payment"] is True
    assert data["final_price"] == 70000
    assert data["accepted_driver"] == str(driver_a["_id"])
    assert data["trip"]["status"] == "confirmed"

    repeat = client.patch(f"/api/trips/{trip_id}/driver-requests/{request_id}",
                          json={"action": "decline"}, headers=auth(passenger))
    assert repeat.status_code == 400

    mine = client.get("/api/trips/my-trips", headers=auth(driver_a)).json()
    assert [t["id"] for t in mine["data"]] == [trip_id]


def test_unknown_bid_action_is_422(client, passenger, make_trip):
    trip = make_trip()
    res = client.patch(f"/api/trips/{trip['_id']}/driver-requests/{ObjectId()}",
                       json={"action": "maybe"}, headers=auth(passenger))
    assert res.status_code == 422


def test_cancel_and_delete(client, passenger, driver_a, make_trip):
    trip = make_trip()
    res = client.patch(f"/api/trips/{trip['_id']}/cancel", json={"reason": "no longer needed"}, headers=auth(passenger))
    assert res.status_code == 200
    assert res.json()["data"]["cancellation_reason"] == "no longer needed"
    assert client.delete(f"/api/trips/{trip['_id']}", headers=auth(passenger)).status_code == 400

    other = make_trip()
    assert client.delete(f"/api/trips/{other['_id']}", headers=auth(driver_a)).status_code == 403
    assert client.delete(f"/api/trips/{other['_id']}", headers=auth(passenger)).status_code == 200


def test_status_route(client, driver_a, confirmed_trip, paid_trip):
    trip_id = str(paid_trip["_id"])
    res = client.patch(f"/api/trips/{trip_id}/status", json={"status": "in_progress"}, headers=auth(driver_a))
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "in_progress"

    assert client.patch(f"/api/trips/{trip_id}/status", json={"status": "paid"}, headers=auth(driver_a)).status_code == 422

    res = client.patch(f"/api/trips/{trip_id}/complete", headers=auth(driver_a))
    assert res.json()["data"]["status"] == "completed"


def test_payment_checkout_and_gateway_return(client, passenger, confirmed_trip):
    res = client.post("/api/payments/create", json={"trip_id": str(confirmed_trip["_id"])}, headers=auth(passenger))
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["amount"] == 95000
    assert data["payment_url"].startswith(config.VNP_URL)

    ret = client.get("/api/payments/vnpay/return", params=signed_return(data["txn_ref"], data["amount"]),
                     follow_redirects=False)
    assert ret.status_code == 302
    assert ret.headers["location"].startswith(config.VNP_FRONTEND_RETURN_URL + "?status=success")

    joined = client.get("/api/trips/my-joined-trips", headers=auth(passenger)).json()
    assert joined["data"][0]["status"] == "paid"

    history = client.get("/api/payments/", params={"status": "completed"}, headers=auth(passenger)).json()
    assert history["total"] == 1
    assert client.get(f"/api/payments/{data['payment_id']}", headers=auth(passenger)).status_code == 200


def test_gateway_return_with_bad_signature_redirects(client):
    ret = client.get("/api/payments/vnpay/return", params={"vnp_TxnRef": "TXN1", "vnp_SecureHash": "00"},
                     follow_redirects=False)
    assert ret.status_code == 302
    assert "status=error" in ret.headers["location"]


def test_cancel_payment_route(client, passenger, driver_a, confirmed_trip):
    data = client.post("/api/payments/create", json={"trip_id": str(confirmed_trip["_id"])},
                       headers=auth(passenger)).json()["data"]
    assert client.patch(f"/api/payments/{data['payment_id']}/cancel", headers=auth(driver_a)).status_code == 403
    res = client.patch(f"/api/payments/{data['payment_id']}/cancel", headers=auth(passenger))
    assert res.json()["data"]["status"] == "cancelled"
    assert client.patch(f"/api/payments/{data['payment_id']}/cancel", headers=auth(passenger)).status_code == 400


def test_register_login_and_vehicle(client):
    res = client.post("/api/users/register", json={
        "full_name": "Lan", "email": "lan@example.com", "password": "secret", "role": "both", "vehicle": VEHICLE,
    })
    assert res.status_code == 201
    user = res.json()["user"]
    assert user["role"] == "both"

    assert client.post("/api/users/register", json={
        "full_name": "Lan", "email": "lan@example.com", "password": "x",
    }).status_code == 400
    assert client.post("/api/users/register", json={
        "full_name": "Minh", "email": "minh@example.com", "password": "x", "role": "driver",
    }).status_code == 400
    assert client.post("/api/users/register", json={
        "full_name": "Root", "email": "root@example.com", "password": "x", "role": "admin",
    }).status_code == 403

    assert client.post("/api/users/login", json={"email": "lan@example.com", "password": "secret"}).status_code == 200
    assert client.post("/api/users/login", json={"email": "lan@example.com", "password": "nope"}).status_code == 400

    headers = {"X-User-ID": user["id"]}
    assert client.get("/api/users/me", headers=headers).json()["email"] == "lan@example.com"
    res = client.put("/api/users/me/vehicle", json=dict(VEHICLE, color="red"), headers=headers)
    assert res.json()["vehicle"]["color"] == "red"


def test_passenger_cannot_register_vehicle(client, passenger):
    assert client.put("/api/users/me/vehicle", json=VEHICLE, headers=auth(passenger)).status_code == 403


def test_ratings_after_completed_trip(client, db, passenger, driver_a, driver_b, paid_trip):
    trip_id = str(paid_trip["_id"])
    body = {"trip_id": trip_id, "rated_user_id": str(driver_a["_id"]), "rating": 5, "comment": "Smooth ride"}
    assert client.post("/api/ratings/", json=body, headers=auth(passenger)).status_code == 400

    trip_service.update_status(db, driver_a, trip_id, "in_progress")
    trip_service.complete_trip(db, driver_a, trip_id)

    res = client.post("/api/ratings/", json=body, headers=auth(passenger))
    assert res.status_code == 201
    assert res.json()["rated_user_role"] == "driver"
    assert client.post("/api/ratings/", json=body, headers=auth(passenger)).status_code == 400
    assert client.post("/api/ratings/", json=dict(body, rated_user_id=str(passenger["_id"])),
                       headers=auth(driver_b)).status_code == 403

    ratings = client.get(f"/api/ratings/user/{driver_a['_id']}", headers=auth(passenger)).json()
    assert [r["rater_name"] for r in ratings] == ["Passenger"]
    assert db.users.find_one({"_id": driver_a["_id"]})["rating"]["as_driver"] == {"average": 5.0, "total_reviews": 1}
