"""
Text analysis for indexing and search: lemmatization, markup stripping,
titles and snippets.
"""
import logging
import re
from collections import Counter
from functools import lru_cache

from bs4 import BeautifulSoup
import nltk
from nltk.corpus import wordnet
from nltk.stem import WordNetLemmatizer

from sitesearch.common.utils import extract_text_from_html

logger = logging.getLogger(__name__)

# Every character outside the target alphabet becomes whitespace
NON_ALPHABET_RE = re.compile(r'[^a-z\s]')
NON_LETTER_RE = re.compile(r'[^a-z]')
TITLE_RE = re.compile(r'<title[^>]*>(.*?)</title>', re.IGNORECASE | re.DOTALL)

# Closed grammatical classes (Penn Treebank): conjunctions, prepositions,
# interjections, determiners and infinitival "to"
SERVICE_TAGS = frozenset({'CC', 'IN', 'UH', 'DT', 'PDT', 'TO'})

SNIPPET_WINDOW = 25
SNIPPET_FALLBACK_CHARS = 300
HIGHLIGHT_OPEN = '<b>'
HIGHLIGHT_CLOSE = '</b>'


def _wordnet_pos(tag):
    if tag.startswith('J'):
        return wordnet.ADJ
    if tag.startswith('V'):
        return wordnet.VERB
    if tag.startswith('R'):
        return wordnet.ADV
    return wordnet.NOUN


class NltkMorphology:
    """Morphology backed by the NLTK perceptron tagger and WordNet."""

    RESOURCES = {
        'taggers/averaged_perceptron_tagger_eng': 'averaged_perceptron_tagger_eng',
        'corpora/wordnet': 'wordnet',
    }

    def __init__(self):
        # Download required NLTK data
        for resource, package in self.RESOURCES.items():
            try:
                nltk.data.find(resource)
            except LookupError:
                logger.info(f"Downloading NLTK resource {package}")
                if not nltk.download(package, quiet=True):
                    raise LookupError(f"NLTK resource {package} is missing and could not be downloaded")
        self.lemmatizer = WordNetLemmatizer()
        logger.info("Initialized NltkMorphology")

    def morph_info(self, word):
        """Grammatical tags of a single lowercase word."""
        return [tag for _, tag in nltk.pos_tag([word])]

    def normal_forms(self, word):
        tags = self.morph_info(word)
        pos = _wordnet_pos(tags[0]) if tags else wordnet.NOUN
        return [self.lemmatizer.lemmatize(word, pos)]


class TextAnalyzer:
    """
    Turns text into lemmas using a morphology backend.

    The backend needs two methods: morph_info(word) returning grammatical
    tags and normal_forms(word) returning candidate lemmas, best first.
    """

    def __init__(self, morphology=None, cache_size=65536):
        self.morphology = morphology or NltkMorphology()
        self._lemma_of = lru_cache(maxsize=cache_size)(self._lemmatize_word)

    def _lemmatize_word(self, word):
        """Lemma of a cleaned token, or None for service words and words the morphology rejects."""
        try:
            if self._is_service_word(self.morphology.morph_info(word)):
                return None
            forms = self.morphology.normal_forms(word)
        except Exception as e:
            logger.warning(f"Skipping word '{word}': {e}")
            return None
        return forms[0] if forms else None

    @staticmethod
    def _is_service_word(tags):
        return any(tag.upper() in SERVICE_TAGS for tag in tags)

    @staticmethod
    def _tokens(text):
        cleaned = NON_ALPHABET_RE.sub(' ', (text or '').lower())
        return [token for token in cleaned.split() if token.strip()]

    def lemma_frequencies(self, text):
        """Map each lemma in the text to its number of occurrences."""
        counts = Counter()
        for token in self._tokens(text):
            lemma = self._lemma_of(token)
            if lemma:
                counts[lemma] += 1
        return dict(counts)

    def extract_lemmas(self, text):
        """Lemmas of a query in order of appearance, repeats included."""
        lemmas = []
        for token in self._tokens(text):
            lemma = self._lemma_of(token)
            if lemma:
                lemmas.append(lemma)
        return lemmas

    def strip_markup(self, html):
        return extract_text_from_html(html)

    def extract_title(self, html):
        if not html:
            return ''
        match = TITLE_RE.search(html)
        if not match:
            return ''
        return BeautifulSoup(match.group(1), 'html.parser').get_text().strip()

    def _matches(self, word, targets):
        cleaned = NON_LETTER_RE.sub('', word.lower())
        return bool(cleaned) and self._lemma_of(cleaned) in targets

    def build_snippet(self, html, query_lemmas):
        """
        Build a text fragment around the first word matching a query lemma.

        Takes up to SNIPPET_WINDOW words on each side of the match and wraps
        every matching word in <b></b>. Without a match the start of the
        text is returned instead.
        """
        text = self.strip_markup(html)
        if not text:
            return ''

        words = text.split()
        targets = set(query_lemmas)

        match_index = next((i for i, word in enumerate(words) if self._matches(word, targets)), -1)
        if match_index == -1:
            if len(text) > SNIPPET_FALLBACK_CHARS:
                return text[:SNIPPET_FALLBACK_CHARS] + '...'
            return text

        start = max(0, match_index - SNIPPET_WINDOW)
        end = min(len(words), match_index + SNIPPET_WINDOW)
        fragment = []
        for word in words[start:end]:
            if self._matches(word, targets):
                fragment.append(f"{HIGHLIGHT_OPEN}{word}{HIGHLIGHT_CLOSE}")
            else:
                fragment.append(word)
        return ' '.join(fragment) + '...'
