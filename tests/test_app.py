"""End to end scenarios through the Flask test client."""

from linkboard import create_app
from linkboard.repositories import ThreadRepository, UserRepository
from tests.conftest import (
    PAGE_SIZE,
    SECRET,
    create_comment,
    create_thread,
    create_user,
    extract_csrf,
    location_path,
    login,
    session_values,
)


def count_threads(html: str) -> int:
    return html.count('class="thread"')


class TestListings:
    def test_index_with_one_more_than_a_page(self, client, db):
        author = create_user(db)
        for i in range(PAGE_SIZE + 1):
            create_thread(db, author, title=f"story {i}")
        response = client.get("/")
        html = response.get_data(as_text=True)
        assert response.status_code == 200
        assert count_threads(html) == PAGE_SIZE
        assert "p=1" in html

        last = client.get("/?p=1").get_data(as_text=True)
        assert count_threads(last) == 1
        assert "p=2" not in last

    def test_exact_page_still_offers_next_page(self, client, db):
        author = create_user(db)
        for i in range(PAGE_SIZE):
            create_thread(db, author, title=f"story {i}")
        html = client.get("/").get_data(as_text=True)
        assert count_threads(html) == PAGE_SIZE
        assert "p=1" in html
        empty = client.get("/?p=1")
        assert empty.status_code == 200
        assert count_threads(empty.get_data(as_text=True)) == 0

    def test_invalid_page_number(self, client):
        assert client.get("/?p=abc").status_code == 400
        assert client.get("/newest?p=-1").status_code == 400

    def test_newest(self, client, db):
        author = create_user(db)
        create_thread(db, author, title="older story", created_at=1000)
        create_thread(db, author, title="newer story", created_at=2000)
        html = client.get("/newest").get_data(as_text=True)
        assert html.index(">newer story</a>") < html.index(">older story</a>")

    def test_domain(self, client, db):
        author = create_user(db)
        create_thread(db, author, title="Go blog", url="https://blog.golang.org/x")
        create_thread(db, author, title="Python", url="https://python.org/")
        html = client.get("/domain?Site=golang.org").get_data(as_text=True)
        assert count_threads(html) == 1
        assert "Go blog" in html

    def test_submitted_by_author(self, client, db):
        author = create_user(db, "johndoe")
        other = create_user(db, "janedoe")
        create_thread(db, author, title="mine 1")
        create_thread(db, author, title="mine 2")
        create_thread(db, other, title="theirs")
        response = client.get(f"/submitted?id={author.id}")
        assert response.status_code == 200
        assert count_threads(response.get_data(as_text=True)) == 2

    def test_submitted_unknown_author(self, client):
        assert client.get("/submitted?id=42").status_code == 404
        assert client.get("/submitted?id=x").status_code == 404

    def test_author_comments_and_new_comments(self, client, db):
        author = create_user(db, "johndoe")
        thread = create_thread(db, author)
        create_comment(db, author, thread, content="first words")
        assert "first words" in client.get(f"/threads?id={author.id}").get_data(as_text=True)
        assert "first words" in client.get("/newcomments").get_data(as_text=True)


class TestDetailPages:
    def test_thread_with_comments(self, client, db):
        author = create_user(db)
        thread = create_thread(db, author, title="Discuss")
        root = create_comment(db, author, thread)
        create_comment(db, author, thread, parent=root)
        create_comment(db, author, thread)
        for path in ("/thread", "/item"):
            response = client.get(f"{path}?id={thread.id}")
            html = response.get_data(as_text=True)
            assert response.status_code == 200
            assert html.count('class="comment"') == 3
            assert '<span class="count">3</span>' in html

    def test_thread_without_comment(self, client, db):
        thread = create_thread(db, create_user(db))
        html = client.get(f"/item?id={thread.id}").get_data(as_text=True)
        assert '<span class="count">0</span>' in html

    def test_missing_thread(self, client):
        response = client.get("/item?id=999")
        assert response.status_code == 404
        assert "Thread with ID" not in response.get_data(as_text=True)

    def test_missing_thread_in_debug_mode(self, app):
        debug_app = create_app({
            "DATABASE": app.config["DATABASE"],
            "SECRET_KEY": SECRET,
            "DEBUG_ERRORS": True,
            "LOG_LEVEL": "WARNING",
            "TESTING": True,
        })
        response = debug_app.test_client().get("/item?id=999")
        assert response.status_code == 404
        assert "Thread with ID 999 Not Found" in response.get_data(as_text=True)

    def test_user_profile(self, client, db):
        user = create_user(db, "johndoe")
        response = client.get(f"/user?id={user.id}")
        assert response.status_code == 200
        assert '<dd class="username">johndoe</dd>' in response.get_data(as_text=True)
        assert client.get("/user?id=999").status_code == 404

    def test_unknown_route(self, client):
        response = client.get("/non-existent-route")
        assert response.status_code == 404
        assert '<p class="error-message">Not Found</p>' in response.get_data(as_text=True)


class TestAuthentication:
    def test_login_page_has_both_forms(self, client):
        html = client.get("/login").get_data(as_text=True)
        assert 'form name="login"' in html
        assert 'form name="registration"' in html
        assert extract_csrf(html, "login_csrf")
        assert extract_csrf(html, "registration_csrf")

    def test_login_success(self, app, client, db):
        user = create_user(db)
        response = login(client)
        assert response.status_code == 302
        assert location_path(response) == "/"
        assert session_values(app, client)["user.ID"] == user.id
        assert 'class="current-user"' in client.get("/").get_data(as_text=True)

    def test_login_wrong_password(self, app, client, db):
        create_user(db)
        response = login(client, password="wrong-password")
        html = response.get_data(as_text=True)
        assert response.status_code == 400
        assert "Invalid Credentials" in html
        assert 'value="mike_doe"' in html
        assert "user.ID" not in session_values(app, client)

    def test_login_unknown_user_gives_same_answer(self, client, db):
        create_user(db)
        known = login(client, password="wrong-password").get_data(as_text=True)
        unknown = login(client, username="nobody", password="wrong-password").get_data(as_text=True)
        assert "Invalid Credentials" in known
        assert "Invalid Credentials" in unknown

    def test_login_with_forged_csrf(self, client, db):
        create_user(db)
        client.get("/login")
        response = client.post("/login", data={
            "login_username": "mike_doe",
            "login_password": "password",
            "login_csrf": "forged:0",
        })
        assert response.status_code == 400

    def test_logout(self, app, client, db):
        create_user(db)
        login(client)
        response = client.post("/logout")
        assert response.status_code == 302
        assert location_path(response) == "/"
        assert "user.ID" not in session_values(app, client)

    def test_registration_and_flash_lifetime(self, client, db):
        html = client.get("/login").get_data(as_text=True)
        response = client.post("/register", data={
            "registration_csrf": extract_csrf(html, "registration_csrf"),
            "registration_username": "jefferson",
            "registration_email": "jefferson@acme.com",
            "registration_password": "password",
            "registration_password_confirmation": "password",
        })
        assert response.status_code == 302
        assert location_path(response) == "/login"
        row = db.execute("SELECT username FROM users WHERE username = ?", ("jefferson",)).fetchone()
        assert row["username"] == "jefferson"

        assert "Registration Successful, please login" in client.get("/login").get_data(as_text=True)
        assert "Registration Successful, please login" not in client.get("/login").get_data(as_text=True)

    def test_registration_duplicate_username(self, client, db):
        create_user(db, "jefferson")
        html = client.get("/login").get_data(as_text=True)
        response = client.post("/register", data={
            "registration_csrf": extract_csrf(html, "registration_csrf"),
            "registration_username": "jefferson",
            "registration_email": "another@acme.com",
            "registration_password": "password",
            "registration_password_confirmation": "password",
        })
        body = response.get_data(as_text=True)
        assert response.status_code == 400
        assert "is already taken" in body
        assert 'name="registration_password" value' not in body
        count = db.execute("SELECT COUNT(*) FROM users WHERE username = ?", ("jefferson",)).fetchone()[0]
        assert count == 1


class TestSubmissions:
    def test_submit_requires_login(self, client, db):
        response = client.post("/submit", data={"submission_title": "x", "submission_url": "x.com"})
        assert response.status_code == 401
        assert location_path(response) == "/login"
        assert client.get("/submit").status_code == 401
        assert db.execute("SELECT COUNT(*) FROM threads").fetchone()[0] == 0

    def test_submit_story(self, client, db):
        user = create_user(db)
        login(client)
        page = client.get("/submit")
        assert page.status_code == 200
        html = page.get_data(as_text=True)
        assert 'form name="submission"' in html

        response = client.post("/submit", data={
            "submission_title": "Serverless development on Amazon AWS",
            "submission_url": "http://presentation.opex.com/index.html?foobar=biz#baz",
            "submission_csrf": extract_csrf(html, "submission_csrf"),
        })
        row = db.execute("SELECT id, author_id FROM threads WHERE title = ?",
                         ("Serverless development on Amazon AWS",)).fetchone()
        assert response.status_code == 302
        assert location_path(response) == f"/item?id={row['id']}"
        assert row["author_id"] == user.id

        story = client.get(location_path(response)).get_data(as_text=True)
        assert "Story successfully created!" in story
        assert "Serverless development on Amazon AWS</a>" in story

    def test_invalid_submission_redisplayed(self, client, db):
        create_user(db)
        login(client)
        html = client.get("/submit").get_data(as_text=True)
        response = client.post("/submit", data={
            "submission_title": "Keep me",
            "submission_url": "not a url",
            "submission_csrf": extract_csrf(html, "submission_csrf"),
        })
        body = response.get_data(as_text=True)
        assert response.status_code == 400
        assert 'value="Keep me"' in body
        assert "is not a valid URL" in body
        assert db.execute("SELECT COUNT(*) FROM threads").fetchone()[0] == 0

    def test_reply_to_comment(self, client, db):
        user = create_user(db)
        thread = create_thread(db, user)
        parent = create_comment(db, user, thread)
        login(client)

        form_page = client.get(f"/comment?id={parent.id}&goto=/item?id={thread.id}")
        assert form_page.status_code == 200
        html = form_page.get_data(as_text=True)

        response = client.post("/comment", data={
            "comment_content": "I agree",
            "comment_thread_id": str(thread.id),
            "comment_parent_id": str(parent.id),
            "comment_goto": f"/item?id={thread.id}",
            "comment_csrf": extract_csrf(html, "comment_csrf"),
        })
        row = db.execute("SELECT id, thread_id, parent_id, author_id FROM comments WHERE content = ?",
                         ("I agree",)).fetchone()
        assert response.status_code == 302
        assert (row["thread_id"], row["parent_id"], row["author_id"]) == (thread.id, parent.id, user.id)
        assert location_path(response) == f"/item?id={thread.id}#{row['id']}"

    def test_reply_with_parent_from_other_thread(self, client, db):
        user = create_user(db)
        thread = create_thread(db, user)
        other_thread = create_thread(db, user)
        foreign_parent = create_comment(db, user, other_thread)
        login(client)
        html = client.get(f"/item?id={thread.id}").get_data(as_text=True)

        response = client.post("/comment", data={
            "comment_content": "misplaced",
            "comment_thread_id": str(thread.id),
            "comment_parent_id": str(foreign_parent.id),
            "comment_csrf": extract_csrf(html, "comment_csrf"),
        })
        assert response.status_code == 400
        assert db.execute("SELECT COUNT(*) FROM comments WHERE content = 'misplaced'").fetchone()[0] == 0

    def test_comment_on_story_page_form(self, client, db):
        user = create_user(db)
        thread = create_thread(db, user)
        login(client)
        html = client.get(f"/item?id={thread.id}").get_data(as_text=True)
        response = client.post(f"/item?id={thread.id}", data={
            "comment_content": "top level",
            "comment_thread_id": str(thread.id),
            "comment_goto": f"/item?id={thread.id}",
            "comment_csrf": extract_csrf(html, "comment_csrf"),
        })
        assert response.status_code == 302
        row = db.execute("SELECT parent_id FROM comments WHERE content = 'top level'").fetchone()
        assert row["parent_id"] is None

    def test_comment_requires_login(self, client, db):
        thread = create_thread(db, create_user(db))
        response = client.post("/comment", data={"comment_content": "x", "comment_thread_id": str(thread.id)})
        assert response.status_code == 401
        assert db.execute("SELECT COUNT(*) FROM comments").fetchone()[0] == 0

    def test_vote(self, client, db):
        user = create_user(db)
        thread = create_thread(db, user)
        login(client)
        html = client.get(f"/item?id={thread.id}").get_data(as_text=True)
        data = {
            "vote_thread_id": str(thread.id),
            "vote_goto": f"/item?id={thread.id}",
            "vote_csrf": extract_csrf(html, "vote_csrf"),
        }
        assert client.post("/vote", data=data).status_code == 302
        assert client.post("/vote", data=data).status_code == 302
        assert ThreadRepository(db).get_by_id(thread.id).score == 1


HUGE = "99999999999999999999"


class TestOutOfRangeNumbers:
    def test_huge_ids_are_not_found(self, client):
        for path in ("/item", "/thread", "/user", "/submitted", "/threads"):
            assert client.get(f"{path}?id={HUGE}").status_code == 404

    def test_huge_page_is_rejected(self, client):
        assert client.get(f"/?p={HUGE}").status_code == 400
        # fits an INTEGER on its own but not once multiplied by the page size
        assert client.get(f"/newest?p={2**63 - 1}").status_code == 400

    def test_huge_thread_id_in_comment_form(self, client, db):
        thread = create_thread(db, create_user(db))
        login(client)
        html = client.get(f"/item?id={thread.id}").get_data(as_text=True)
        response = client.post("/comment", data={
            "comment_content": "lost",
            "comment_thread_id": HUGE,
            "comment_parent_id": HUGE,
            "comment_csrf": extract_csrf(html, "comment_csrf"),
        })
        assert response.status_code == 400
        assert "thread_id must be a number" in response.get_data(as_text=True)
        assert db.execute("SELECT COUNT(*) FROM comments").fetchone()[0] == 0


class TestRegistrationRace:
    def test_concurrent_duplicate_is_redisplayed(self, client, db, monkeypatch):
        create_user(db, "jefferson")
        # the other request inserts between our uniqueness check and our insert
        monkeypatch.setattr(UserRepository, "get_one_by_username", lambda self, username: None)
        html = client.get("/login").get_data(as_text=True)
        response = client.post("/register", data={
            "registration_csrf": extract_csrf(html, "registration_csrf"),
            "registration_username": "jefferson",
            "registration_email": "another@acme.com",
            "registration_password": "password",
            "registration_password_confirmation": "password",
        })
        assert response.status_code == 400
        assert "username is already taken" in response.get_data(as_text=True)
        assert db.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1
