import pytest

from trendcast.forecaster.storage import LocalModelStore, MemoryModelStore, validate_model_name


def test_local_store_round_trip(tmp_path):
    store = LocalModelStore(str(tmp_path / 'models'))

    store.put('destination_usa', b'payload')

    assert store.get('destination_usa') == b'payload'
    assert store.names() == ['destination_usa']
    assert (tmp_path / 'models' / 'destination_usa.pkl').read_bytes() == b'payload'


def test_local_store_missing_model(tmp_path):
    store = LocalModelStore(str(tmp_path))

    with pytest.raises(FileNotFoundError):
        store.get('absent')
    assert LocalModelStore(str(tmp_path / 'nowhere')).names() == []


def test_memory_store():
    store = MemoryModelStore()
    store.put('b', b'2')
    store.put('a', b'1')

    assert store.get('a') == b'1'
    assert store.names() == ['a', 'b']
    with pytest.raises(FileNotFoundError):
        store.get('c')


@pytest.mark.parametrize('name', ['', '../escape', 'a/b', '.hidden', None])
def test_invalid_model_names(name):
    with pytest.raises(ValueError):
        validate_model_name(name)
