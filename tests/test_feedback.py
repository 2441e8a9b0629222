from conftest import auth, order_body


def place(client, product, user=None):
    if user is not None:
        return client.post("/orders", json=order_body(product), headers=auth(user)).json()
    return client.post("/orders/guest", json=order_body(product, email="guest@example.com")).json()


def review(client, order, product, rating=5, comment="Gooey and perfect"):
    body = {
        "orderId": order["id"],
        "feedback": [{
            "productId": str(product["_id"]),
            "productName": product["name"],
            "variantName": "Box of 6",
            "rating": rating,
            "comment": comment,
        }],
    }
    return client.post("/feedback", json=body)


def test_submission_is_stored_and_announced(client, db, customer, make_product, pushed):
    product = make_product()
    order = place(client, product, customer)

    res = review(client, order, product)

    assert res.status_code == 201
    assert res.json()["message"] == "Feedback submitted successfully"
    entry = res.json()["feedback"]["productFeedback"][0]
    assert entry["isDisplayed"] is True
    assert entry["rating"] == 5
    assert db["notification"].count_documents({"type": "FEEDBACK"}) == 1
    assert pushed[-1]["data"]["type"] == "FEEDBACK"


def test_one_submission_per_order(client, make_product):
    product = make_product()
    order = place(client, product)
    review(client, order, product)

    again = review(client, order, product)

    assert again.status_code == 400
    assert again.json()["message"] == "Feedback already submitted for this order"


def test_unknown_order(client, make_product):
    product = make_product()
    res = review(client, {"id": "64b7f0000000000000000000"}, product)
    assert res.status_code == 404
    assert res.json()["message"] == "Order not found"


def test_rating_out_of_range(client, make_product):
    product = make_product()
    order = place(client, product)
    assert review(client, order, product, rating=6).status_code == 400


def test_only_three_new_reviews_go_live(client, db, make_product):
    product = make_product()
    for _ in range(4):
        review(client, place(client, product), product)

    flags = [doc["product_feedback"][0]["is_displayed"] for doc in db["feedback"].find({}).sort("_id", 1)]
    assert flags == [True, True, True, False]
    assert len(client.get(f"/products/{product['_id']}/feedbacks").json()) == 3
    assert len(client.get(f"/feedback/product/{product['_id']}").json()) == 3


def test_display_cap_on_toggle(client, db, admin, make_product):
    product = make_product()
    ids = [review(client, place(client, product), product).json()["feedback"]["id"] for _ in range(4)]
    hidden = ids[3]
    toggle = {"productId": str(product["_id"])}

    blocked = client.patch(f"/admin/feedbacks/{hidden}/display", json=toggle, headers=auth(admin))

    assert blocked.status_code == 400
    assert blocked.json()["message"] == "Maximum of 3 feedbacks can be displayed per product"
    assert db["feedback"].count_documents({"product_feedback.is_displayed": True}) == 3

    hide = client.patch(f"/admin/feedbacks/{ids[0]}/display", json=toggle, headers=auth(admin))
    assert hide.status_code == 200
    assert hide.json()["productFeedback"][0]["isDisplayed"] is False

    show = client.patch(f"/admin/feedbacks/{hidden}/display", json=toggle, headers=auth(admin))
    assert show.status_code == 200
    assert show.json()["productFeedback"][0]["isDisplayed"] is True


def test_cap_is_per_product(client, db, make_product):
    fudge = make_product()
    walnut = make_product(name="Walnut Crunch", category="nuts")
    for _ in range(3):
        review(client, place(client, fudge), fudge)

    res = review(client, place(client, walnut), walnut)

    assert res.json()["feedback"]["productFeedback"][0]["isDisplayed"] is True


def test_public_feed_shows_customer_names(client, customer, make_product):
    product = make_product()
    review(client, place(client, product, customer), product, comment="Best brownie")
    review(client, place(client, product), product, comment="Loved it")

    feed = client.get(f"/products/{product['_id']}/feedbacks").json()

    assert {(f["customerName"], f["comment"]) for f in feed} == {
        ("Casey", "Best brownie"),
        ("Guest User", "Loved it"),
    }


def test_admin_can_delete_feedback(client, db, admin, make_product):
    product = make_product()
    feedback_id = review(client, place(client, product), product).json()["feedback"]["id"]

    listed = client.get("/admin/feedbacks", headers=auth(admin)).json()
    assert listed[0]["customerName"] == "Guest User"

    assert client.delete(f"/admin/feedbacks/{feedback_id}", headers=auth(admin)).status_code == 204
    assert db["feedback"].count_documents({}) == 0
    assert client.delete(f"/admin/feedbacks/{feedback_id}", headers=auth(admin)).status_code == 404
