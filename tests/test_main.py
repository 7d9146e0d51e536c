import pytest

from ameca.main import Args, database_init, parse_args


def test_defaults():
    assert parse_args([]) == Args(cache=False, shards=1)


@pytest.mark.parametrize("flag", ["-c", "--cache"])
def test_cache_flag(flag):
    assert parse_args([flag]).cache is True


@pytest.mark.parametrize(
    "argv",
    [["--shards", "4"], ["--shards=4"], ["-s", "4"], ["-s4"], ["-s=4"]],
)
def test_shards_forms(argv):
    assert parse_args(argv).shards == 4


def test_combined_short_flags():
    assert parse_args(["-cs3"]) == Args(cache=True, shards=3)


def test_unknown_arguments_are_ignored():
    assert parse_args(["extra", "--unknown", "-x", "-c"]) == Args(cache=True, shards=1)


def test_negative_shards_are_read():
    assert parse_args(["--shards", "-2"]).shards == -2


@pytest.mark.parametrize(
    "argv",
    [["-s"], ["--shards"], ["--shards", "x"], ["--shards", " 4"], ["--cache=yes"]],
)
def test_bad_arguments_raise(argv):
    with pytest.raises(ValueError):
        parse_args(argv)


@pytest.mark.asyncio
async def test_database_init_needs_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        await database_init()


@pytest.mark.asyncio
async def test_database_init_opens_usable_database(monkeypatch, tmp_path):
    path = tmp_path / "bot.sqlite"
    monkeypatch.setenv("DATABASE_URL", str(path))
    db = await database_init()
    try:
        await db.add_warning(5, 7)
        assert await db.warning_count(5, 7) == 1
    finally:
        await db.close()
    assert path.exists()