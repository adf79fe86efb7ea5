from sandboxer.core.sandbox.slug import MAX_SLUG_LENGTH, slugify


class TestSlugify:
    """Tests for name to slug conversion."""

    def test_lowercases_and_hyphenates(self) -> None:
        """Runs of non-alphanumerics collapse to a single hyphen."""
        assert slugify("My Cool  Project!") == "my-cool-project"

    def test_strips_leading_and_trailing_separators(self) -> None:
        """No hyphen at either end."""
        assert slugify("--hello world--") == "hello-world"

    def test_non_ascii_characters_are_separators(self) -> None:
        """Non-ASCII letters are treated like punctuation."""
        assert slugify("Café Déjà") == "caf-d-j"

    def test_length_is_bounded(self) -> None:
        """Long names are truncated without a trailing hyphen."""
        slug = slugify("a" * 47 + " b" * 20)
        assert len(slug) <= MAX_SLUG_LENGTH
        assert not slug.endswith("-")

    def test_empty_result_gets_deterministic_fallback(self) -> None:
        """Names with nothing usable still produce a stable, non-empty slug."""
        first = slugify("!!!")
        assert first.startswith("sandbox-")
        assert len(first) == len("sandbox-") + 8
        assert slugify("!!!") == first
        assert slugify("???") != first
