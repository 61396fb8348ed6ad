"""Tests for trending word and bigram analysis."""

from mediawatch.analytics.text import StopWords, TextAnalyzer, load_stop_words


def permissive(stop_words=("the", "and")):
    """Analyzer with thresholds disabled so small corpora produce output."""
    return TextAnalyzer(StopWords.of(stop_words), word_threshold=0, bigram_threshold=0)


class TestTokenize:
    """Token filtering."""

    def test_stop_words_and_short_tokens_removed(self):
        analyzer = permissive()
        assert analyzer.tokenize("the cat and the dog ran") == ["cat", "dog", "ran"]

    def test_bigrams_from_adjacent_survivors(self):
        result = permissive().analyze(["the cat and the dog ran"])
        assert [term for term, _ in result.bigrams] == ["cat dog", "dog ran"]

    def test_non_letters_are_stripped(self):
        analyzer = permissive(())
        assert analyzer.tokenize("Hello, world! 2024 don't") == ["hello", "world", "dont"]

    def test_unicode_letters_kept(self):
        assert permissive(()).tokenize("Energía Itaipú año") == ["energía", "itaipú", "año"]

    def test_numerals_of_any_script_are_stripped(self):
        assert permissive(()).tokenize("energía² ⅫⅫⅫ abc ٣٤٥") == ["energía", "abc"]

    def test_stop_words_are_case_insensitive(self):
        analyzer = TextAnalyzer(StopWords.of(["The"]))
        assert analyzer.tokenize("THE cat") == ["cat"]

    def test_empty_documents(self):
        assert permissive().tokenize(None) == []
        result = permissive().analyze([None, "", "   "])
        assert result.words == [] and result.bigrams == []


class TestSelection:
    """Thresholds, limits and ordering."""

    def test_word_count_threshold_is_strict(self):
        analyzer = TextAnalyzer()
        documents = ["alpha beta"] * 5 + ["beta"]
        words = dict(analyzer.analyze(documents).words)
        assert "alpha" not in words  # exactly 5
        assert words["beta"] == 6

    def test_bigram_count_threshold_is_strict(self):
        analyzer = TextAnalyzer()
        documents = ["gran final"] * 2 + ["copa america"] * 3
        bigrams = dict(analyzer.analyze(documents).bigrams)
        assert "gran final" not in bigrams
        assert bigrams["copa america"] == 3

    def test_bigrams_never_span_documents(self):
        result = permissive(()).analyze(["cat dog", "bird fish"])
        bigrams = [term for term, _ in result.bigrams]
        assert "dog bird" not in bigrams
        assert set(bigrams) == {"cat dog", "bird fish"}

    def test_words_counted_across_documents(self):
        result = permissive(()).analyze(["cat dog", "cat"])
        assert result.words[0] == ("cat", 2)

    def test_sorted_descending_with_stable_ties(self):
        result = permissive(()).analyze(["zeta alpha alpha mid mid mid zeta"])
        assert result.words == [("mid", 3), ("zeta", 2), ("alpha", 2)]

    def test_limits(self):
        analyzer = TextAnalyzer(word_threshold=0, bigram_threshold=0, word_limit=2, bigram_limit=1)
        result = analyzer.analyze(["one two three four five six"])
        assert len(result.words) == 2
        assert len(result.bigrams) == 1

    def test_default_limits(self):
        analyzer = TextAnalyzer()
        assert (analyzer.word_limit, analyzer.bigram_limit) == (50, 30)

    def test_to_dict_keeps_ranked_pairs(self):
        result = permissive(()).analyze(["cat dog cat"])
        data = result.to_dict()
        assert data["words"][0] == ["cat", 2]
        assert data["bigrams"] == [["cat dog", 1], ["dog cat", 1]]


class TestStopWordsFile:
    """Loading stop words from disk."""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "stop.txt"
        path.write_text("# comment\nPara\n\n  los  \n", encoding="utf-8")
        stop_words = load_stop_words(str(path))
        assert "para" in stop_words
        assert "los" in stop_words
        assert "# comment" not in stop_words
        assert len(stop_words) == 2

    def test_missing_file_is_empty(self, tmp_path):
        assert len(load_stop_words(str(tmp_path / "missing.txt"))) == 0
        assert len(load_stop_words(None)) == 0

    def test_stop_words_are_immutable(self):
        stop_words = StopWords.of(["a"])
        assert isinstance(stop_words.words, frozenset)
