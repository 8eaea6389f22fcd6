"""Page handlers.

Each controller is called as ``controller(c, request, response, next_)``
with a fresh ``Container`` and writes its outcome through the container:
a rendered page, a redirect or ``c.http_error``. Controllers keep no state
between requests.
"""

from typing import Callable, List, Optional

from linkboard.container import SESSION_USER_KEY, Container
from linkboard.exceptions import DatabaseError, DuplicateError, ValidationError
from linkboard.forms import (
    MAX_ID,
    CommentForm,
    LoginForm,
    RegistrationForm,
    SubmissionForm,
    VoteForm,
    parse_id,
    safe_goto,
    validate_comment_form,
    validate_login_form,
    validate_registration_form,
    validate_submission_form,
    validate_vote_form,
)
from linkboard.models import Thread
from linkboard.repositories import like_pattern

INVALID_CREDENTIALS = "Invalid Credentials"


def _query_int(c: Container, key: str) -> Optional[int]:
    return parse_id(c.request.args.get(key))


def _page_number(c: Container) -> Optional[int]:
    """Zero based page from ``p``; answers 400 and returns None when invalid."""
    raw = c.request.args.get("p") or "0"
    page = parse_id(raw)
    # the offset has to fit sqlite too
    if page is None or page * c.stories_per_page > MAX_ID:
        c.http_error(400, f"invalid page number {raw!r}")
        return None
    return page


def _thread_page(
    c: Container,
    fetch: Callable[[int, int], List[Thread]],
    template: str,
    **context,
) -> None:
    page = _page_number(c)
    if page is None:
        return
    limit = c.stories_per_page
    offset = page * limit
    try:
        threads = fetch(limit, offset)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    # a full page means there may be more, even when the next one turns out empty
    next_page = page + 1 if len(threads) == limit else page
    context.update(threads=threads, page=page, next_page=next_page, offset=offset)
    c.render(template, context)


def _require_user(c: Container):
    user = c.current_user()
    if user is None:
        c.http_redirect("/login", 401)
    return user


# listings


def stories_by_score_controller(c, request, response, next_):
    _thread_page(c, c.get_thread_repository().get_sorted_by_score, "thread_list.html", title="Top Stories")


def new_stories_controller(c, request, response, next_):
    _thread_page(c, c.get_thread_repository().get_newest, "thread_list.html", title="New Stories")


def stories_by_domain_controller(c, request, response, next_):
    site = (request.args.get("Site") or request.args.get("site") or "").strip()
    pattern = like_pattern(site)

    def fetch(limit, offset):
        return c.get_thread_repository().get_where_url_like(pattern, limit, offset)

    _thread_page(c, fetch, "thread_list.html", title=f"Stories by domain {site}", site=site)


def stories_by_author_controller(c, request, response, next_):
    author_id = _query_int(c, "id")
    if author_id is None:
        c.http_error(404, "Not Found")
        return
    try:
        author = c.get_user_repository().get_by_id(author_id)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    if author is None:
        c.http_error(404, f"User with id {author_id} not found")
        return

    def fetch(limit, offset):
        return c.get_thread_repository().get_by_author_id(author.id, limit, offset)

    _thread_page(c, fetch, "user_submitted_stories.html", title=f"{author.username}'s submissions", author=author)


def author_comments_controller(c, request, response, next_):
    author_id = _query_int(c, "id")
    if author_id is None:
        c.http_error(404, "Not Found")
        return
    try:
        author = c.get_user_repository().get_by_id(author_id)
        comments = c.get_comment_repository().get_by_author_id(author_id) if author else []
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    if author is None:
        c.http_error(404, f"User with id {author_id} not found")
        return
    c.render("comments_list.html", {
        "comments": comments,
        "author": author,
        "title": f"{author.username}'s comments",
    })


def new_comments_controller(c, request, response, next_):
    try:
        comments = c.get_comment_repository().get_newest(c.stories_per_page)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    c.render("newcomments.html", {"comments": comments, "title": "New Comments"})


# detail pages


def story_by_id_controller(c, request, response, next_):
    if request.method == "POST":
        reply_controller(c, request, response, next_)
        return
    thread_id = _query_int(c, "id")
    if thread_id is None:
        c.http_error(404, "Not Found")
        return
    try:
        thread = c.get_thread_repository().get_by_id_with_comments(thread_id)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    if thread is None:
        c.http_error(404, f"Thread with ID {thread_id} Not Found")
        return
    form = CommentForm(
        csrf=c.get_csrf().generate("comment"),
        thread_id=thread.id,
        goto=f"{request.path}?id={thread.id}",
    )
    c.render("thread_show.html", {
        "thread": thread,
        "comment_form": form,
        "vote_csrf": c.get_csrf().generate("vote"),
        "title": thread.title,
    })


def user_profile_controller(c, request, response, next_):
    user_id = _query_int(c, "id")
    if user_id is None:
        c.http_error(404, "Not Found")
        return
    try:
        user = c.get_user_repository().get_by_id(user_id)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    if user is None:
        c.http_error(404, "Not Found")
        return
    c.render("user_profile.html", {"user": user, "title": f"Profile: {user.username}"})


# authentication


def _render_login_page(c: Container, login_form=None, registration_form=None, status=None, **context) -> None:
    csrf = c.get_csrf()
    login_form = login_form or LoginForm()
    registration_form = registration_form or RegistrationForm()
    # submitted passwords are never echoed back
    login_form.password = ""
    registration_form.password = ""
    registration_form.password_confirmation = ""
    login_form.csrf = csrf.generate(login_form.name)
    registration_form.csrf = csrf.generate(registration_form.name)
    context.update(login_form=login_form, registration_form=registration_form, title="Login")
    c.render("login.html", context, status=status)


def login_controller(c, request, response, next_):
    if request.method != "POST":
        _render_login_page(c)
        return
    form = LoginForm.decode(request.form)
    login_error = ""
    try:
        validate_login_form(form, c.get_csrf())
        candidate = c.get_user_repository().get_one_by_username(form.username)
    except ValidationError as exc:
        c.get_logger().info("login rejected: %s", exc)
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    else:
        if candidate is not None and candidate.authenticate(form.password):
            c.get_session().set(SESSION_USER_KEY, candidate.id)
            c.set_current_user(candidate)
            c.get_logger().info("user %d logged in", candidate.id)
            c.http_redirect("/", 302)
            return
        # same answer for unknown user and wrong password
        login_error = INVALID_CREDENTIALS
        c.get_logger().info("login failed for %r", form.username)
    _render_login_page(c, login_form=form, status=400, login_error=login_error)


def logout_controller(c, request, response, next_):
    c.get_session().delete(SESSION_USER_KEY)
    c.set_current_user(None)
    c.http_redirect("/", 302)


def registration_controller(c, request, response, next_):
    if request.method != "POST":
        _render_login_page(c)
        return
    form = RegistrationForm.decode(request.form)
    try:
        validate_registration_form(form, c.get_csrf(), c.get_user_repository())
        try:
            user = c.get_user_repository().save(form.model())
        except DuplicateError as exc:
            # a concurrent registration won the race
            form.add_error(exc.column, "is already taken" if exc.column == "username" else "is already registered")
            form.raise_for_errors()
    except ValidationError as exc:
        c.get_logger().info("registration rejected: %s", exc)
        _render_login_page(
            c, registration_form=form, status=400, registration_error="Registration Form has errors"
        )
        return
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    c.get_logger().info("user %d registered", user.id)
    c.get_session().add_flash("Registration Successful, please login", "success")
    c.http_redirect("/login", 302)


# submissions


def submit_story_controller(c, request, response, next_):
    user = _require_user(c)
    if user is None:
        return
    csrf = c.get_csrf()
    if request.method != "POST":
        form = SubmissionForm(csrf=csrf.generate("submission"))
        c.render("submit.html", {"submission_form": form, "title": "Submit"})
        return
    form = SubmissionForm.decode(request.form)
    try:
        validate_submission_form(form, csrf)
        thread = c.get_thread_repository().create(form.model(user.id))
    except ValidationError as exc:
        c.get_logger().info("submission rejected: %s", exc)
        form.csrf = csrf.generate("submission")
        c.render("submit.html", {"submission_form": form, "title": "Submit"}, status=400)
        return
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    c.get_session().add_flash("Story successfully created!", "success")
    c.http_redirect(f"/item?id={thread.id}", 302)


def reply_controller(c, request, response, next_):
    user = _require_user(c)
    if user is None:
        return
    csrf = c.get_csrf()
    if request.method != "POST":
        parent_id = _query_int(c, "id")
        if parent_id is None:
            c.http_error(400, "a parent comment id is required")
            return
        try:
            parent = c.get_comment_repository().get_by_id(parent_id)
        except DatabaseError as exc:
            c.http_error(500, exc)
            return
        if parent is None:
            c.http_error(404, "Not Found")
            return
        form = CommentForm(
            csrf=csrf.generate("comment"),
            thread_id=parent.thread_id,
            parent_id=parent.id,
            goto=safe_goto(request.args.get("goto", ""), f"/item?id={parent.thread_id}"),
        )
        c.render("comment_create.html", {"parent_comment": parent, "comment_form": form, "title": "Reply"})
        return
    form = CommentForm.decode(request.form)
    try:
        validate_comment_form(form, csrf, c.get_thread_repository(), c.get_comment_repository())
        comment = c.get_comment_repository().create(form.model(user.id))
    except ValidationError as exc:
        c.get_logger().info("comment rejected: %s", exc)
        form.csrf = csrf.generate("comment")
        c.render("comment_create.html", {
            "comment_form": form,
            "title": "Submit a comment",
            "error": "Your form has errors",
        }, status=400)
        return
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    c.get_session().add_flash("Comment successfully created.", "success")
    c.http_redirect(f"{form.goto}#{comment.id}", 302)


def vote_controller(c, request, response, next_):
    user = _require_user(c)
    if user is None:
        return
    form = VoteForm.decode(request.form)
    try:
        validate_vote_form(form, c.get_csrf(), c.get_thread_repository())
        counted = c.get_thread_repository().vote(form.thread_id, user.id)
    except ValidationError as exc:
        c.http_error(400, exc)
        return
    except DatabaseError as exc:
        c.http_error(500, exc)
        return
    if not counted:
        c.get_session().add_flash("You already voted for this story.", "errors")
    c.http_redirect(form.goto, 302)


def not_found_controller(c, request, response, next_):
    c.http_error(404, "Not Found")
