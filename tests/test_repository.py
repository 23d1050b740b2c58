import json
import pytest
from crm_agent.core.errors import PatternStoreError
from crm_agent.data.repository import PatternRepository, write_export, read_export


def test_missing_file_loads_empty(tmp_path):
    assert PatternRepository(str(tmp_path / 'none.json')).load() == {}


def test_save_and_load(tmp_path, pattern_factory):
    path = tmp_path / 'patterns.json'
    pattern = pattern_factory()
    repo = PatternRepository(str(path))
    repo.save({pattern.id: pattern})

    document = json.loads(path.read_text())
    assert document['version'] == '1.0'
    assert 'lastUpdated' in document
    assert document['patterns'][0]['id'] == pattern.id

    loaded = PatternRepository(str(path)).load()
    assert list(loaded) == [pattern.id]
    assert loaded[pattern.id].action_sequence[0].target.primary_selector == '#reports'
    assert not (tmp_path / 'patterns.json.tmp').exists()


def test_corrupt_file_is_quarantined(tmp_path):
    path = tmp_path / 'patterns.json'
    path.write_text('{"patterns": [')

    assert PatternRepository(str(path)).load() == {}
    assert not path.exists()
    assert (tmp_path / 'patterns.json.corrupt').read_text() == '{"patterns": ['


def test_unknown_document_fields_survive_save(tmp_path, pattern_factory):
    path = tmp_path / 'patterns.json'
    pattern = pattern_factory()
    path.write_text(json.dumps({
        'lastUpdated': '2024-01-01T00:00:00Z',
        'version': '1.0',
        'deployment': 'dealer-42',
        'patterns': [pattern.to_dict(), {'taskType': 'orphan'}],
    }))

    repo = PatternRepository(str(path))
    loaded = repo.load()
    assert list(loaded) == [pattern.id]
    repo.save(loaded)

    document = json.loads(path.read_text())
    assert document['deployment'] == 'dealer-42'
    assert {'taskType': 'orphan'} in document['patterns']


def test_save_failure_raises(tmp_path, pattern_factory):
    blocker = tmp_path / 'blocker'
    blocker.write_text('not a directory')
    repo = PatternRepository(str(blocker / 'patterns.json'))
    with pytest.raises(PatternStoreError):
        repo.save({'x': pattern_factory()})


def test_export_and_read(tmp_path, pattern_factory):
    path = tmp_path / 'export' / 'patterns.json'
    patterns = [pattern_factory(), pattern_factory(selectors=('#other',))]
    write_export(str(path), patterns)

    data = json.loads(path.read_text())
    assert set(data) == {'exportDate', 'version', 'patterns'}
    assert [p.id for p in read_export(str(path))] == [p.id for p in patterns]


def test_read_export_rejects_bad_format(tmp_path):
    path = tmp_path / 'bad.json'
    path.write_text(json.dumps({'items': []}))
    with pytest.raises(PatternStoreError):
        read_export(str(path))
