# tests/orm/test_bootstrap.py
from __future__ import annotations

import logging
import sys

import pytest

from railcar.exceptions import AssociationError, ModelLoadError, ParseError, SchemaError
from railcar.orm import ActiveRecord, bootstrap_models, discover_models
from railcar.orm.bootstrap import models_in_module


MODEL_FILES = {
    "user.py": """
        from railcar.orm import ActiveRecord

        class User(ActiveRecord):
            has_many = ["posts", lambda: ("comments", {"through": "posts"})]
            validates = {"name": {"presence": True, "length": {"in": "5..10"}}}
            callbacks = {"after_commit": [("notify_user", {"on": "create"})]}

            notified = []

            def notify_user(self):
                User.notified.append(self.name)
        """,
    "post.py": """
        from railcar.orm import ActiveRecord

        class Post(ActiveRecord):
            belongs_to = ["user"]
            has_many = ["comments"]
        """,
    "comment.py": """
        from railcar.orm import ActiveRecord

        class Comment(ActiveRecord):
            belongs_to = ["post"]
        """,
}


@pytest.fixture
def models_dir(tmp_path, write_py):
    d = tmp_path / "models"
    d.mkdir()
    for name, src in MODEL_FILES.items():
        write_py(d / name, src)
    return d


def test_bootstrap_explicit_model_list(blog_engine, blog_models):
    User, Post, Comment = blog_models
    ctx = bootstrap_models(blog_engine, models=[User, Post, Comment])

    assert ctx.models == [User, Post, Comment]
    assert sorted(ctx.registry) == ["Comment", "Post", "User"]
    for m in (User, Post, Comment):
        state = ctx.state(m)
        assert state.definition_parsed and state.schema_loaded and state.associations_wired


def test_bootstrap_order_does_not_matter(blog_engine, blog_models):
    User, Post, Comment = blog_models
    # User's associations point at models initialized after it in the list
    ctx = bootstrap_models(blog_engine, models=[Comment, User, Post])
    assert ctx.state(User).associations_wired


def test_phases_run_as_barriers(blog_engine, blog_models, caplog):
    with caplog.at_level(logging.INFO, logger="railcar"):
        bootstrap_models(blog_engine, models=list(blog_models))

    markers = [
        "Importing Model Classes",
        "Parsing Definitions",
        "Initializing Models",
        "Setting up Associations",
        "All models loaded",
    ]
    positions = [caplog.text.index(m) for m in markers]
    assert positions == sorted(positions)
    # every model registered before any association is wired
    last_register = caplog.text.rindex("Registered model")
    assert last_register < caplog.text.index("Setting up Associations (Pass 3)")


def test_bootstrap_from_path(blog_engine, models_dir):
    ctx = bootstrap_models(blog_engine, path=models_dir)

    assert sorted(m.__name__ for m in ctx.models) == ["Comment", "Post", "User"]
    User = ctx.model_named("User")
    u = User.create(name="JoeSmith")
    assert User.notified == ["JoeSmith"]
    assert u.posts == []


def test_bootstrap_from_package(blog_engine, tmp_path, write_py, monkeypatch):
    pkg = tmp_path / "blogapp" / "models"
    pkg.mkdir(parents=True)
    write_py(tmp_path / "blogapp" / "__init__.py", "")
    write_py(pkg / "__init__.py", "")
    for name, src in MODEL_FILES.items():
        write_py(pkg / name, src)
    write_py(pkg / "_helpers.py", "VALUE = 1\n")

    monkeypatch.syspath_prepend(str(tmp_path))
    try:
        ctx = bootstrap_models(blog_engine, package="blogapp.models")
        assert sorted(m.__name__ for m in ctx.models) == ["Comment", "Post", "User"]
    finally:
        for mod in [m for m in sys.modules if m == "blogapp" or m.startswith("blogapp.")]:
            del sys.modules[mod]


def test_import_failure_aborts_before_any_model_is_parsed(blog_engine, models_dir, write_py, caplog):
    write_py(models_dir / "broken.py", "import does_not_exist_anywhere\n")
    write_py(models_dir / "notes.py", "NOTHING = None\n")

    with caplog.at_level(logging.ERROR, logger="railcar"):
        with pytest.raises(ModelLoadError) as ei:
            bootstrap_models(blog_engine, path=models_dir)

    msg = str(ei.value)
    assert "2 module(s)" in msg
    assert "broken" in msg and "notes: no ActiveRecord subclass defined" in msg
    assert "Aborting bootstrap" in caplog.text
    assert "Registered model" not in caplog.text


def test_missing_models_dir_raises(blog_engine, tmp_path):
    with pytest.raises(ModelLoadError, match="Models directory not found"):
        bootstrap_models(blog_engine, path=tmp_path / "nope")


def test_exactly_one_source_required(blog_engine, blog_models):
    with pytest.raises(ModelLoadError, match="Exactly one"):
        discover_models()
    with pytest.raises(ModelLoadError, match="Exactly one"):
        discover_models(models=list(blog_models), package="x")


def test_explicit_models_must_be_active_records():
    with pytest.raises(ModelLoadError, match="Not ActiveRecord subclasses"):
        discover_models(models=[object])


def test_schema_error_is_fatal(engine, blog_models):
    with pytest.raises(SchemaError):
        bootstrap_models(engine, models=list(blog_models))


def test_association_error_is_fatal(blog_engine):
    class User(ActiveRecord):
        has_many = ["invoices"]

    with pytest.raises(AssociationError):
        bootstrap_models(blog_engine, models=[User])


def test_strict_mode_reaches_parser(blog_engine):
    class User(ActiveRecord):
        validates = {"name": {"uniqueness": True}}

    with pytest.raises(ParseError):
        bootstrap_models(blog_engine, models=[User], strict=True)

    ctx = bootstrap_models(blog_engine, models=[User])
    assert "User" in ctx.registry


def test_models_in_module_skips_imports_and_abstract_bases(tmp_path, write_py, monkeypatch):
    write_py(
        tmp_path / "mixed_models.py",
        """
        from railcar.orm import ActiveRecord

        class ApplicationRecord(ActiveRecord):
            abstract = True

        class Account(ApplicationRecord):
            pass
        """,
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    import mixed_models

    try:
        assert models_in_module(mixed_models) == [mixed_models.Account]
    finally:
        sys.modules.pop("mixed_models", None)


def test_folders_sharing_a_module_stem_load_their_own_models(blog_engine, tmp_path, write_py):
    first, second = tmp_path / "first", tmp_path / "second"
    for folder, label in ((first, "first"), (second, "second")):
        folder.mkdir()
        write_py(
            folder / "user.py",
            f"""
            from railcar.orm import ActiveRecord

            class User(ActiveRecord):
                label = "{label}"
            """,
        )

    try:
        a = bootstrap_models(blog_engine, path=first).model_named("User")
        b = bootstrap_models(blog_engine, path=second).model_named("User")
    finally:
        sys.modules.pop("user", None)

    assert (a.label, b.label) == ("first", "second")
    assert a is not b
