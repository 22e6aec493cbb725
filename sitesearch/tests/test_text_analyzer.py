import unittest
from unittest.mock import patch

from sitesearch.indexer.text_analyzer import NltkMorphology, TextAnalyzer
from sitesearch.tests.helpers import FakeMorphology


class TestTextAnalyzer(unittest.TestCase):
    def setUp(self):
        self.morphology = FakeMorphology()
        self.analyzer = TextAnalyzer(self.morphology)

    def test_lemma_frequencies_counts_normal_forms(self):
        frequencies = self.analyzer.lemma_frequencies("Cats and dogs, CATS!")
        self.assertEqual(frequencies, {'cat': 2, 'dog': 1})

    def test_non_alphabet_characters_split_tokens(self):
        frequencies = self.analyzer.lemma_frequencies("cat42dog_bird")
        self.assertEqual(frequencies, {'cat': 1, 'dog': 1, 'bird': 1})

    def test_service_words_are_discarded(self):
        self.assertEqual(self.analyzer.lemma_frequencies("the cat and of a dog"), {'cat': 1, 'dog': 1})
        self.assertEqual(self.analyzer.extract_lemmas("the and of"), [])

    def test_extract_lemmas_keeps_order_and_repeats(self):
        self.assertEqual(self.analyzer.extract_lemmas("running cats run"), ['run', 'cat', 'run'])

    def test_lemmatization_is_cached(self):
        self.analyzer.lemma_frequencies("cats cats cats")
        self.assertEqual(self.morphology.calls, 1)

    def test_empty_text(self):
        self.assertEqual(self.analyzer.lemma_frequencies(""), {})
        self.assertEqual(self.analyzer.lemma_frequencies(None), {})

    def test_strip_markup(self):
        html = "<html><head><style>p {}</style></head><p>Hello <b>world</b></p>\n\n   again</html>"
        self.assertEqual(self.analyzer.strip_markup(html), "Hello world again")

    def test_html_entities_are_decoded(self):
        html = "<p>cats&nbsp;&amp;&nbsp;dogs</p>"
        text = self.analyzer.strip_markup(html)

        self.assertNotIn("nbsp", text)
        self.assertNotIn("amp", text)
        self.assertEqual(self.analyzer.lemma_frequencies(text), {'cat': 1, 'dog': 1})
        self.assertEqual(self.analyzer.extract_title("<title>Cats &amp; Dogs</title>"), "Cats & Dogs")

    def test_word_rejected_by_morphology_is_skipped(self):
        morph_info = self.morphology.morph_info

        def failing_morph_info(word):
            if word == 'bad':
                raise ValueError('unparsable')
            return morph_info(word)

        with patch.object(self.morphology, 'morph_info', side_effect=failing_morph_info):
            frequencies = self.analyzer.lemma_frequencies("cats bad dogs")

        self.assertEqual(frequencies, {'cat': 1, 'dog': 1})

    def test_extract_title(self):
        self.assertEqual(self.analyzer.extract_title("<html><TITLE> My Page </TITLE></html>"), "My Page")
        self.assertEqual(self.analyzer.extract_title("<html><body>none</body></html>"), "")
        self.assertEqual(self.analyzer.extract_title(""), "")

    def test_snippet_window_around_first_match(self):
        words = [f"word{i}" for i in range(100)]
        words[30] = "Cats"
        words[40] = "cats."
        snippet = self.analyzer.build_snippet("<p>" + " ".join(words) + "</p>", ['cat'])

        self.assertTrue(snippet.endswith('...'))
        tokens = snippet[:-3].split(' ')
        self.assertEqual(len(tokens), 50)
        self.assertEqual(tokens[0], 'word5')
        self.assertEqual(tokens[25], '<b>Cats</b>')
        self.assertEqual(tokens[35], '<b>cats.</b>')

    def test_snippet_window_clamped_to_text(self):
        snippet = self.analyzer.build_snippet("dogs bark at night", ['dog'])
        self.assertEqual(snippet, "<b>dogs</b> bark at night...")

    def test_snippet_without_match_falls_back_to_text_start(self):
        self.assertEqual(self.analyzer.build_snippet("<p>short text</p>", ['cat']), "short text")

        long_text = "x" * 400
        snippet = self.analyzer.build_snippet(long_text, ['cat'])
        self.assertEqual(snippet, "x" * 300 + "...")

    def test_snippet_of_empty_page(self):
        self.assertEqual(self.analyzer.build_snippet("", ['cat']), "")


class TestNltkMorphology(unittest.TestCase):
    @patch('sitesearch.indexer.text_analyzer.nltk.download', return_value=False)
    @patch('sitesearch.indexer.text_analyzer.nltk.data.find', side_effect=LookupError('missing'))
    def test_failed_download_raises(self, mock_find, mock_download):
        with self.assertRaises(LookupError):
            NltkMorphology()
        mock_download.assert_called_once()


if __name__ == '__main__':
    unittest.main()
