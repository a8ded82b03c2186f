import pytest
from sqlalchemy.pool import StaticPool

from berryorm import Instance, create_instance
from berryorm.cli import load_schema, main
from berryorm.config import DEFAULT_DATABASE_URL, Settings, load_settings


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv('BERRYORM_DATABASE_URL', 'sqlite+aiosqlite:///app.db')
    monkeypatch.setenv('BERRYORM_ECHO', '1')
    monkeypatch.setenv('BERRYORM_DEFAULT_EXTENSIONS', 'false')
    settings = load_settings(dotenv=False)
    assert settings.database_url == 'sqlite+aiosqlite:///app.db'
    assert settings.echo is True
    assert settings.default_extensions is False
    assert not settings.is_memory_sqlite


def test_settings_defaults(monkeypatch):
    for key in ('BERRYORM_DATABASE_URL', 'BERRYORM_ECHO', 'BERRYORM_DEFAULT_EXTENSIONS'):
        monkeypatch.delenv(key, raising=False)
    settings = load_settings(dotenv=False)
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.echo is False
    kwargs = settings.engine_kwargs()
    assert kwargs['poolclass'] is StaticPool


@pytest.mark.asyncio
async def test_create_instance_from_url():
    from tests.schema import schema

    orm = create_instance(schema, 'sqlite+aiosqlite:///:memory:', settings=Settings())
    try:
        assert isinstance(orm, Instance)
        await orm.migrate()
        await orm.create_one('tags', {'name': 'x'})
        assert [t['name'] for t in await orm.find('tags')] == ['x']
    finally:
        await orm.dispose()


def test_load_schema_accepts_schema_objects_and_mappings(tmp_path, monkeypatch):
    module = tmp_path / 'raw_schema_module.py'
    module.write_text(
        "from berryorm import with_defaults\n"
        "collections = {'notes': with_defaults({'title': {'type': 'varchar'}})}\n"
        "def build():\n"
        "    return collections\n"
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    assert list(load_schema('raw_schema_module:collections')) == ['notes']
    assert list(load_schema('raw_schema_module:build')) == ['notes']
    assert 'users' in load_schema('tests.schema:schema')
    with pytest.raises(ValueError):
        load_schema('tests.schema')


def test_cli_plan_and_migrate(tmp_path, capsys):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"

    assert main(['--url', url, 'plan', 'tests.schema:schema']) == 0
    planned = capsys.readouterr().out.splitlines()
    assert 'create table users' in planned
    assert len(planned) == 12

    assert main(['--url', url, 'migrate', 'tests.schema:schema']) == 0
    assert len(capsys.readouterr().out.splitlines()) == 12

    assert main(['--url', url, 'plan', 'tests.schema:schema']) == 0
    assert capsys.readouterr().out.strip() == 'No changes.'


def test_cli_reports_failures(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    assert main(['--url', url, 'plan', 'missing_module_xyz:schema']) == 1


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 2
    assert 'berryorm-migrate' in capsys.readouterr().out
