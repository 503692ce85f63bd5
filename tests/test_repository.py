from src.chatbot.domain.models import ProjectCreate, ProjectFileCreate, ProjectUpdate
from src.chatbot.infrastructure.repository import DEFAULT_SYSTEM_PROMPT


def _project(repo, user_id="user-1", **kwargs):
    return repo.create_project(user_id, ProjectCreate(name=kwargs.pop("name", "Helper"), **kwargs))


def test_create_project_applies_defaults(repo, monkeypatch):
    monkeypatch.setenv("DEFAULT_MODEL", "anthropic/claude-3-haiku")
    project = _project(repo)
    assert project.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert project.model == "anthropic/claude-3-haiku"
    assert project.user_id == "user-1"


def test_projects_are_owner_scoped(repo):
    project = _project(repo, user_id="alice")
    assert repo.get_project(project.id, "alice") is not None
    assert repo.get_project(project.id, "bob") is None
    assert repo.list_projects("bob") == []
    assert repo.update_project(project.id, "bob", ProjectUpdate(name="Hijack")) is None
    assert repo.delete_project(project.id, "bob") is False


def test_update_project_keeps_unset_fields(repo):
    project = _project(repo, system_prompt="Be terse.", model="m-1")
    updated = repo.update_project(project.id, "user-1", ProjectUpdate(model="m-2"))
    assert updated.model == "m-2"
    assert updated.system_prompt == "Be terse."
    assert updated.name == project.name


def test_touch_conversation_moves_strictly_forward(repo):
    project = _project(repo)
    conv = repo.create_conversation(project.id, "Plans")
    stamps = [conv.updated_at]
    for _ in range(5):
        stamps.append(repo.touch_conversation(conv.id))
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert repo.get_conversation(conv.id, "user-1").updated_at == stamps[-1]


def test_touch_missing_conversation_is_a_noop(repo):
    assert repo.touch_conversation(999) == ""


def test_get_conversation_checks_project_owner(repo):
    project = _project(repo, user_id="alice")
    conv = repo.create_conversation(project.id)
    assert conv.title == "New Chat"
    assert repo.get_conversation(conv.id, "alice").id == conv.id
    assert repo.get_conversation(conv.id, "bob") is None


def test_deleting_conversation_cascades_to_messages(repo, store):
    project = _project(repo)
    conv = repo.create_conversation(project.id)
    store.add_message(project.id, "user", "in thread", conversation_id=conv.id)
    store.add_message(project.id, "user", "default scope")
    assert repo.delete_conversation(conv.id) is True
    remaining = store.list_messages(project.id)
    assert [m.content for m in remaining] == ["default scope"]


def test_deleting_project_cascades_everything(repo, store):
    project = _project(repo)
    conv = repo.create_conversation(project.id)
    store.add_message(project.id, "user", "hello", conversation_id=conv.id)
    repo.create_prompt(project.id, "tone", "Be kind.")
    repo.add_file(project.id, ProjectFileCreate(filename="a.txt", original_name="a.txt", extracted_text="foo"))
    assert repo.delete_project(project.id, "user-1") is True
    assert store.count_messages(project.id) == 0
    assert repo.list_conversations(project.id) == []
    assert repo.list_prompts(project.id) == []
    assert repo.list_files(project.id) == []


def test_update_prompt_keeps_blank_fields_and_checks_owner(repo):
    project = _project(repo, user_id="alice")
    prompt = repo.create_prompt(project.id, "tone", "Be kind.")
    assert repo.get_owned_prompt(prompt.id, "bob") is None
    updated = repo.update_prompt(prompt.id, "  ", "Be blunt.")
    assert updated.name == "tone"
    assert updated.content == "Be blunt."
    assert repo.get_owned_prompt(prompt.id, "alice").content == "Be blunt."
    assert repo.update_prompt(999, "x", "y") is None


def test_get_owned_file_checks_project_owner(repo):
    project = _project(repo, user_id="alice")
    f = repo.add_file(project.id, ProjectFileCreate(filename="n", original_name="notes.txt", extracted_text="foo"))
    assert repo.get_owned_file(f.id, "alice").original_name == "notes.txt"
    assert repo.get_owned_file(f.id, "bob") is None


def test_prompts_and_files_do_not_leak_across_projects(repo):
    a = _project(repo, name="A")
    b = _project(repo, name="B")
    prompt = repo.create_prompt(a.id, "tone", "Be kind.")
    f = repo.add_file(a.id, ProjectFileCreate(filename="x", original_name="x.txt", extracted_text="foo"))
    assert repo.get_prompt(prompt.id, b.id) is None
    assert repo.get_files(b.id, [f.id]) == []
    assert repo.delete_file(f.id, b.id) is False


def test_get_files_keeps_request_order_and_drops_duplicates(repo):
    project = _project(repo)
    first = repo.add_file(project.id, ProjectFileCreate(filename="1", original_name="one.txt"))
    second = repo.add_file(project.id, ProjectFileCreate(filename="2", original_name="two.txt"))
    files = repo.get_files(project.id, [second.id, 404, first.id, second.id])
    assert [f.id for f in files] == [second.id, first.id]
