from serene.auth.storage import FileStorage, MemoryStorage, SessionStorage, build_storage, clear_auth_items


def test_memory_storage_roundtrip():
    storage = MemoryStorage({"a": "1"})
    storage.set_item("b", "2")
    storage.remove_item("a")
    storage.remove_item("missing")
    assert storage.keys() == ["b"]
    assert storage.get_item("b") == "2"


def test_file_storage_persists_across_instances(tmp_path):
    path = tmp_path / "state" / "auth.json"
    FileStorage(path).set_item("serene.auth.token", "{}")

    again = FileStorage(path)
    assert again.get_item("serene.auth.token") == "{}"
    again.remove_item("serene.auth.token")
    assert FileStorage(path).keys() == []


def test_file_storage_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "auth.json"
    path.write_text("{broken", encoding="utf-8")
    storage = FileStorage(path)
    assert storage.get_item("anything") is None
    storage.set_item("k", "v")
    assert storage.get_item("k") == "v"


def test_clear_auth_items_only_removes_auth_keys():
    storage = MemoryStorage(
        {"serene.auth.token": "x", "SESSION_ID": "y", "sb-auth-token-code-verifier": "z", "theme": "dark"}
    )
    removed = clear_auth_items(storage)
    assert sorted(removed) == ["SESSION_ID", "sb-auth-token-code-verifier", "serene.auth.token"]
    assert storage.keys() == ["theme"]


def test_build_storage(tmp_path):
    assert isinstance(build_storage("memory", ""), MemoryStorage)
    file_storage = build_storage("file", str(tmp_path / "a.json"))
    assert isinstance(file_storage, FileStorage)
    assert isinstance(file_storage, SessionStorage)
