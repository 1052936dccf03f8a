"""Tests for variable stores and ``${name}`` resolution."""

from graphflow.core.variables import InMemoryVariableStore, VariableResolver


class TestVariableResolver:
    """Test cases for VariableResolver."""

    def test_workflow_variable_wins_over_global(self):
        """Workflow scope shadows a global of the same name."""
        store = InMemoryVariableStore(
            global_variables={"base": "https://b"},
            workflow_variables={"wf-1": {"base": "https://a"}},
        )
        resolver = VariableResolver(store)
        resolved = resolver.resolve_parameters({"url": "${base}/x"}, "wf-1")
        assert resolved == {"url": "https://a/x"}

    def test_global_used_without_workflow_scope(self):
        """Globals apply to workflows that do not define the name."""
        store = InMemoryVariableStore(global_variables={"base": "https://b"})
        resolver = VariableResolver(store)
        assert resolver.resolve_parameters({"url": "${base}/x"}, "other") == {"url": "https://b/x"}

    def test_missing_variable_stays_literal(self):
        """Unknown names are left as the literal token."""
        resolver = VariableResolver(InMemoryVariableStore())
        assert resolver.resolve_parameters({"url": "${missing}/x"}, "wf") == {"url": "${missing}/x"}

    def test_nested_structures_and_non_strings(self):
        """Dicts and lists are resolved recursively; other values pass through."""
        store = InMemoryVariableStore(global_variables={"name": "Ada", "n": 3})
        resolver = VariableResolver(store)
        params = {
            "greeting": "Hi ${name}",
            "list": ["${name}", 1, None],
            "nested": {"count": "${n}", "flag": True},
            "number": 42,
        }
        resolved = resolver.resolve_parameters(params, None)
        assert resolved == {
            "greeting": "Hi Ada",
            "list": ["Ada", 1, None],
            "nested": {"count": "3", "flag": True},
            "number": 42,
        }

    def test_whitespace_inside_braces(self):
        """Names are trimmed inside the braces."""
        store = InMemoryVariableStore(global_variables={"host": "example.org"})
        assert VariableResolver(store).resolve_string("${ host }", store.get_global_variables()) == "example.org"

    def test_referenced_names(self):
        """All referenced names are collected from nested parameters."""
        names = VariableResolver.referenced_names({"a": "${x}-${y}", "b": ["${z}"], "c": 1})
        assert names == {"x", "y", "z"}


class TestInMemoryVariableStore:
    """Test cases for InMemoryVariableStore."""

    def test_set_and_delete(self):
        """Variables can be written and removed per scope."""
        store = InMemoryVariableStore()
        store.set_variable("token", "abc")
        store.set_variable("token", "scoped", workflow_id="wf")
        assert store.get_global_variables() == {"token": "abc"}
        assert store.get_variables_for_workflow("wf") == {"token": "scoped"}
        assert store.delete_variable("token")
        assert not store.delete_variable("token")
        assert store.get_global_variables() == {}
