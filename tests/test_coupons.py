from datetime import timedelta

from conftest import auth, order_body
from database import utcnow


def validate(client, user, code, user_id=None):
    body = {"code": code}
    if user_id is not None:
        body["userId"] = user_id
    return client.post("/coupons/validate", json=body, headers=auth(user))


def test_validate_returns_public_fields(client, customer, make_coupon):
    make_coupon(code="SWEET50", max_uses=5, used_count=2)

    res = validate(client, customer, " sweet50 ")

    assert res.status_code == 200
    assert res.json() == {
        "code": "SWEET50",
        "type": "fixed",
        "value": 50,
        "isActive": True,
        "maxUses": 5,
        "usedCount": 2,
    }


def test_validate_requires_login(client, make_coupon):
    make_coupon()
    assert client.post("/coupons/validate", json={"code": "SWEET50"}).status_code == 401


def test_unknown_coupon(client, customer):
    res = validate(client, customer, "NOPE")
    assert res.status_code == 404
    assert res.json()["message"] == "Coupon not found"


def test_inactive_coupon(client, customer, make_coupon):
    make_coupon(is_active=False)
    assert validate(client, customer, "SWEET50").json()["message"] == "This coupon is no longer active"


def test_expired_coupon(client, customer, make_coupon):
    make_coupon(expiry_date=utcnow() - timedelta(days=1))
    res = validate(client, customer, "SWEET50")
    assert res.status_code == 400
    assert res.json()["message"] == "This coupon has expired"


def test_usage_limit_reached(client, customer, make_coupon):
    make_coupon(max_uses=3, used_count=3)
    assert validate(client, customer, "SWEET50").json()["message"] == "This coupon has reached its usage limit"


def test_checks_run_in_order(client, db, customer, make_coupon):
    coupon = make_coupon(is_active=False, expiry_date=utcnow() - timedelta(days=1), max_uses=1, used_count=1)
    db["coupon_usage"].insert_one({"coupon_id": coupon["_id"], "user_id": customer["_id"], "used_at": utcnow()})

    with_user = validate(client, customer, "SWEET50", str(customer["_id"]))
    without_user = validate(client, customer, "SWEET50")

    assert with_user.json()["message"] == "You have already used this coupon"
    assert without_user.json()["message"] == "This coupon is no longer active"


def test_new_customers_only(client, customer, make_user, make_product, make_coupon):
    product = make_product()
    make_coupon(code="FIRST", new_users_only=True)
    client.post("/orders", json=order_body(product), headers=auth(customer))
    newcomer = make_user(email="new@example.com")

    returning = validate(client, customer, "FIRST")
    fresh = validate(client, newcomer, "FIRST")
    on_behalf = validate(client, newcomer, "FIRST", str(customer["_id"]))

    assert returning.status_code == 400
    assert returning.json()["message"] == "This coupon is for new customers only"
    assert fresh.status_code == 200
    assert on_behalf.json()["message"] == "This coupon is for new customers only"


def test_invalid_user_id_format(client, customer, make_coupon):
    make_coupon()
    res = validate(client, customer, "SWEET50", "not-an-id")
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid user ID format"


def test_max_uses_is_never_exceeded(client, db, make_user, make_product, make_coupon):
    product = make_product()
    coupon = make_coupon(code="LIMITED", max_uses=3)
    shoppers = [make_user(email=f"shopper{i}@example.com") for i in range(4)]

    statuses = [
        client.post("/orders", json=order_body(product, coupon="LIMITED"), headers=auth(u)).status_code
        for u in shoppers
    ]

    assert statuses == [201, 201, 201, 400]
    assert db["coupon"].find_one({"_id": coupon["_id"]})["used_count"] == 3
    assert db["coupon_usage"].count_documents({"coupon_id": coupon["_id"]}) == 3
    assert db["order"].count_documents({"coupon.code": "LIMITED"}) == 3

