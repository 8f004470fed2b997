import math

from bson import ObjectId


def test_librarian_creates_book(client, db, login):
    headers = login("lib@example.com", role="librarian")
    response = client.post("/books", json={"bookName": "Dune", "category": "sci-fi", "price": 12.5,
                                           "status": "published", "author": "Herbert"}, headers=headers)
    assert response.status_code == 200
    book = db["books"].find_one({"_id": ObjectId(response.json()["insertedId"])})
    assert book["createdBy"] == "lib@example.com"
    assert book["author"] == "Herbert"
    assert "createdAt" in book


def test_plain_user_cannot_create_book(client, db, login):
    headers = login("reader@example.com")
    response = client.post("/books", json={"bookName": "Dune", "price": 1}, headers=headers)
    assert response.status_code == 403
    assert db["books"].count_documents({}) == 0


def test_search_paginates_published_matches_by_price(client, add_book):
    for i in range(12):
        add_book(bookName=f"Foo volume {i}", price=float(20 - i), day=i)
    add_book(bookName="FOO draft", price=1.0, status="unpublished")
    add_book(bookName="Unrelated", price=2.0)

    response = client.get("/books", params={"search": "foo", "sort": "low-to-high", "page": 2, "limit": 5})
    assert response.status_code == 200
    body = response.json()
    assert body["totalPages"] == math.ceil(12 / 5)
    prices = [b["price"] for b in body["books"]]
    assert prices == [14.0, 15.0, 16.0, 17.0, 18.0]
    assert all(b["status"] == "published" for b in body["books"])


def test_search_is_case_insensitive_and_literal(client, add_book):
    add_book(bookName="C++ Primer")
    add_book(bookName="c++ for kids")
    add_book(bookName="Cpp")
    body = client.get("/books", params={"search": "C++"}).json()
    assert sorted(b["bookName"] for b in body["books"]) == ["C++ Primer", "c++ for kids"]
    assert body["totalPages"] == 1


def test_search_price_ties_break_newest_first(client, add_book):
    add_book(bookName="older", price=5.0, day=1)
    add_book(bookName="newer", price=5.0, day=2)
    add_book(bookName="pricey", price=9.0, day=3)
    body = client.get("/books", params={"sort": "high-to-low"}).json()
    assert [b["bookName"] for b in body["books"]] == ["pricey", "newer", "older"]


def test_search_filters_by_category(client, add_book):
    add_book(bookName="A", category="poetry")
    add_book(bookName="B", category="history")
    body = client.get("/books", params={"filter": "poetry"}).json()
    assert [b["bookName"] for b in body["books"]] == ["A"]


def test_search_without_matches(client):
    assert client.get("/books").json() == {"books": [], "totalPages": 0}


def test_related_books(client, add_book):
    target = add_book(bookName="Target", category="poetry", day=0)
    for i in range(5):
        add_book(bookName=f"Poem {i}", category="poetry", day=i + 1)
    add_book(bookName="Hidden", category="poetry", status="unpublished", day=10)
    add_book(bookName="Other", category="history", day=11)

    response = client.get(f"/related-books/{target}")
    assert response.status_code == 200
    assert [b["bookName"] for b in response.json()] == ["Poem 4", "Poem 3", "Poem 2", "Poem 1"]


def test_related_books_not_found(client):
    assert client.get("/related-books/not-an-id").status_code == 404
    assert client.get(f"/related-books/{ObjectId()}").status_code == 404


def test_all_books_is_admin_only(client, add_book, login):
    add_book(status="unpublished")
    add_book()
    assert client.get("/all-books", headers=login("lib@example.com", role="librarian")).status_code == 403
    response = client.get("/all-books", headers=login("admin@example.com", role="admin"))
    assert len(response.json()) == 2


def test_my_books(client, add_book, login):
    add_book(bookName="Mine", createdBy="lib@example.com")
    add_book(bookName="Theirs", createdBy="other@example.com")
    response = client.get("/my-books", headers=login("lib@example.com", role="librarian"))
    assert [b["bookName"] for b in response.json()] == ["Mine"]


def test_any_verified_user_updates_status(client, db, add_book, login):
    book_id = add_book(status="published")
    response = client.patch(f"/books/update-status/{book_id}", json={"status": "unpublished"},
                            headers=login("reader@example.com"))
    assert response.json()["modifiedCount"] == 1
    assert db["books"].find_one({"_id": ObjectId(book_id)})["status"] == "unpublished"


def test_owner_updates_book_content(client, db, add_book, login):
    book_id = add_book(createdBy="lib@example.com")
    headers = login("lib@example.com", role="librarian")
    response = client.patch(f"/books/update/{book_id}",
                            json={"bookName": "Renamed", "price": 3.0, "createdBy": "x@example.com"},
                            headers=headers)
    assert response.json()["modifiedCount"] == 1
    book = db["books"].find_one({"_id": ObjectId(book_id)})
    assert (book["bookName"], book["price"], book["createdBy"]) == ("Renamed", 3.0, "lib@example.com")


def test_librarian_cannot_update_anothers_book(client, db, add_book, login):
    book_id = add_book(bookName="Original", createdBy="other@example.com")
    headers = login("lib@example.com", role="librarian")
    response = client.patch(f"/books/update/{book_id}", json={"bookName": "Stolen"}, headers=headers)
    assert response.status_code == 403
    assert db["books"].find_one({"_id": ObjectId(book_id)})["bookName"] == "Original"


def test_get_book(client, add_book):
    book_id = add_book(bookName="Solo")
    response = client.get(f"/books/{book_id}")
    assert response.json()["bookName"] == "Solo"
    assert response.json()["id"] == book_id
    assert client.get(f"/books/{ObjectId()}").status_code == 404
    assert client.get("/books/garbage").status_code == 404


def test_latest_books_ignores_status(client, add_book):
    for i in range(10):
        add_book(bookName=f"B{i}", status="unpublished" if i % 2 else "published", day=i)
    body = client.get("/latest-books").json()
    assert [b["bookName"] for b in body] == [f"B{i}" for i in range(9, 1, -1)]


def test_delete_book_cascades_to_orders_only(client, db, add_book, login):
    book_id = add_book()
    keep_id = add_book(bookName="Keep")
    db["orders"].insert_many([{"bookId": book_id}, {"bookId": book_id}, {"bookId": keep_id}])
    db["wishlist"].insert_one({"userEmail": "a@example.com", "bookId": book_id})
    db["reviews"].insert_one({"bookId": book_id, "comment": "ok"})

    response = client.delete(f"/books/delete/{book_id}", headers=login("admin@example.com", role="admin"))
    assert response.json() == {"acknowledged": True, "deletedCount": 1}
    assert db["books"].count_documents({}) == 1
    assert db["orders"].count_documents({"bookId": book_id}) == 0
    assert db["orders"].count_documents({"bookId": keep_id}) == 1
    assert db["wishlist"].count_documents({"bookId": book_id}) == 1
    assert db["reviews"].count_documents({"bookId": book_id}) == 1


def test_delete_book_requires_admin(client, db, add_book, login):
    book_id = add_book()
    response = client.delete(f"/books/delete/{book_id}", headers=login("lib@example.com", role="librarian"))
    assert response.status_code == 403
    assert db["books"].count_documents({}) == 1
