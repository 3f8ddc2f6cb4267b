"""
Unit tests for multi-signal similarity scoring and similarity search.
"""

import time

import pytest
from PIL import Image

from photocache.exceptions import HashLengthMismatchError
from photocache.hashing import ImageHasher
from photocache.similarity import SimilarityMatcher, SimilarityWeights, ArtifactMemo


YELLOW = (255, 255, 0)
ORANGE = (255, 165, 0)
CYAN = (0, 255, 255)


class TestSimilarityWeights:
    """Test SimilarityWeights validation."""

    def test_defaults(self):
        weights = SimilarityWeights()
        assert weights.as_dict() == {'hash': 0.40, 'structural': 0.35, 'color': 0.25}

    def test_from_dict_partial(self):
        weights = SimilarityWeights.from_dict({'color': 0.5})
        assert weights.color == 0.5
        assert weights.hash == 0.40

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            SimilarityWeights(hash=-0.1)

    def test_all_zero_rejected(self):
        with pytest.raises(ValueError):
            SimilarityWeights(hash=0, structural=0, color=0)


class TestArtifactMemo:
    """Test ArtifactMemo."""

    def test_get_or_compute_once(self):
        memo = ArtifactMemo()
        calls = []

        def compute():
            calls.append(1)
            return "value"

        assert memo.get_or_compute("abc", "kind", compute) == "value"
        assert memo.get_or_compute("abc", "kind", compute) == "value"
        assert len(calls) == 1

    def test_evicts_oldest(self):
        memo = ArtifactMemo(max_entries=2)
        memo.put("a", "k", 1)
        memo.put("b", "k", 2)
        memo.put("c", "k", 3)
        assert len(memo) == 2
        assert memo.get("a", "k") is None
        assert memo.get("c", "k") == 3

    def test_clear(self):
        memo = ArtifactMemo()
        memo.put("a", "k", 1)
        memo.clear()
        assert len(memo) == 0


class TestColorOnlyScenarios:
    """Flat swatches carry no structure, so only color decides."""

    def test_red_vs_blue(self, matcher, solid_image):
        assert matcher.similarity(solid_image('red'), solid_image('blue')) == pytest.approx(1 / 3)

    def test_same_color_different_size(self, matcher, solid_image):
        """Test a flat color is fully similar to itself at another size."""
        score = matcher.similarity(solid_image('green', (100, 100)), solid_image('green', (102, 98)))
        assert score == pytest.approx(1.0)

    def test_yellow_vs_orange_and_red(self, matcher, solid_image):
        yellow = solid_image(YELLOW)
        assert matcher.similarity(yellow, solid_image(ORANGE)) == pytest.approx(2 / 3)
        assert matcher.similarity(yellow, solid_image('red')) == pytest.approx(2 / 3)

    def test_cyan(self, matcher, solid_image):
        cyan = solid_image(CYAN)
        assert matcher.similarity(cyan, solid_image('blue')) == pytest.approx(2 / 3)
        assert matcher.similarity(cyan, solid_image('red')) == pytest.approx(0.0)


class TestSimilarity:
    """Test SimilarityMatcher.similarity."""

    def test_same_pixels(self, matcher, pattern_image):
        assert matcher.similarity(pattern_image(1), pattern_image(1)) == 1.0

    def test_resized_pattern(self, matcher, pattern_image):
        """Test the same picture at double resolution scores as a full match."""
        assert matcher.similarity(pattern_image(1, 64), pattern_image(1, 128)) == pytest.approx(1.0)

    def test_near_duplicate(self, matcher, pattern_image):
        """Test a one-pixel edit stays highly similar."""
        original = pattern_image(2)
        edited = original.copy()
        r, g, b = edited.getpixel((10, 10))
        edited.putpixel((10, 10), (255 - r, 255 - g, 255 - b))
        assert matcher.similarity(original, edited) > 0.85

    def test_near_duplicate_beats_unrelated(self, matcher, pattern_image):
        original = pattern_image(3)
        edited = original.copy()
        edited.putpixel((0, 0), (0, 0, 0))
        assert matcher.similarity(original, edited) > matcher.similarity(original, pattern_image(4))

    def test_gradients(self, matcher, gradient_image):
        """Test a resized ramp is closer than the same ramp turned sideways."""
        horizontal = gradient_image(100, 100, horizontal=True)
        resized = gradient_image(120, 90, horizontal=True)
        vertical = gradient_image(100, 100, horizontal=False)
        assert matcher.similarity(horizontal, resized) > matcher.similarity(horizontal, vertical)

    def test_symmetric(self, matcher, pattern_image, solid_image, gradient_image):
        images = [pattern_image(1), pattern_image(2), solid_image(CYAN), gradient_image(50, 40)]
        for a in images:
            for b in images:
                assert matcher.similarity(a, b) == pytest.approx(matcher.similarity(b, a))

    def test_bounded(self, matcher, pattern_image, solid_image, gradient_image):
        images = [pattern_image(5), solid_image('red'), gradient_image(30, 30, horizontal=False)]
        for a in images:
            for b in images:
                assert 0.0 <= matcher.similarity(a, b) <= 1.0

    def test_degenerate_scores_zero(self, matcher, solid_image, pattern_image):
        empty = Image.new('RGB', (0, 0))
        assert matcher.similarity(empty, solid_image('red')) == 0.0
        assert matcher.similarity(pattern_image(1), b"") == 0.0
        assert matcher.similarity(empty, empty) == 0.0

    def test_accepts_bytes_and_paths(self, matcher, pattern_image, encode_image, temp_dir):
        img = pattern_image(6)
        path = temp_dir / "photo.png"
        img.save(path)
        assert matcher.similarity(encode_image(img), path) == 1.0

    def test_accepts_signatures(self, matcher, pattern_image):
        sig = matcher.signature(pattern_image(1, 64))
        assert matcher.similarity(sig, pattern_image(1, 128)) == pytest.approx(1.0)

    def test_hash_length_mismatch_propagates(self, pattern_image):
        """Test comparing signatures from different hash grids is an error."""
        with SimilarityMatcher() as default, SimilarityMatcher(hasher=ImageHasher(grid_size=4)) as small:
            a = default.signature(pattern_image(1))
            b = small.signature(pattern_image(2))
            with pytest.raises(HashLengthMismatchError):
                default.similarity(a, b)

    def test_metric_failure_scores_zero(self, matcher, pattern_image, monkeypatch):
        def broken(a, b):
            raise RuntimeError("metric exploded")

        monkeypatch.setattr(matcher, '_structural_score', broken)
        assert matcher.similarity(pattern_image(1), pattern_image(1, 128)) == 0.0

    def test_metric_timeout_scores_zero(self, pattern_image, monkeypatch):
        with SimilarityMatcher(comparison_timeout=0.05) as m:
            def slow(a, b):
                time.sleep(0.5)
                return 1.0

            monkeypatch.setattr(m, '_color_score', slow)
            assert m.similarity(pattern_image(1), pattern_image(1, 128)) == 0.0

    def test_custom_weights(self, pattern_image, solid_image):
        """Test a color-only weighting scores by histogram overlap alone."""
        with SimilarityMatcher(weights=SimilarityWeights(hash=0, structural=0, color=1)) as m:
            assert m.similarity(solid_image(YELLOW), solid_image(ORANGE)) == pytest.approx(2 / 3)


class TestCombine:
    """Test SimilarityMatcher.combine."""

    def test_all_signals(self, matcher):
        assert matcher.combine(1.0, 0.0, 0.0) == pytest.approx(0.40)
        assert matcher.combine(0.5, 0.5, 0.5) == pytest.approx(0.5)

    def test_abstention_renormalizes(self, matcher):
        assert matcher.combine(None, None, 0.8) == pytest.approx(0.8)
        assert matcher.combine(None, 1.0, 0.0) == pytest.approx(0.35 / 0.60)

    def test_all_abstain(self, matcher):
        assert matcher.combine(None, None, None) == 0.0


class TestSignature:
    """Test SimilarityMatcher.signature and memoization."""

    def test_contents(self, matcher, pattern_image):
        sig = matcher.signature(pattern_image(1))
        assert len(sig.content_hash) == 64
        assert len(sig.perceptual_hash) == 63
        assert sig.features.shape == (1800,)
        assert sig.histogram.shape == (192,)

    def test_memoized(self, matcher, pattern_image):
        matcher.signature(pattern_image(1))
        matcher.signature(pattern_image(1))
        assert matcher.memo_size == 1
        matcher.clear_cache()
        assert matcher.memo_size == 0

    def test_degenerate(self, matcher):
        sig = matcher.signature(b"")
        assert sig.is_empty
        assert sig.features.size == 0
        assert matcher.memo_size == 0

    def test_remember(self, matcher, pattern_image):
        with SimilarityMatcher() as other:
            sig = other.signature(pattern_image(8))
        matcher.remember(sig)
        assert matcher.memo_size == 1


class TestFindSimilar:
    """Test SimilarityMatcher.find_similar."""

    def test_threshold_and_order(self, matcher, make_entry, solid_image):
        """Test matches are filtered, best first, and ties keep input order."""
        red = make_entry(solid_image('red'))
        orange = make_entry(solid_image(ORANGE))
        blue = make_entry(solid_image('blue'))
        yellow_large = make_entry(solid_image(YELLOW, (150, 120)))

        matches = matcher.find_similar(solid_image(YELLOW), [red, orange, blue, yellow_large], 0.5)

        assert [m.entry.content_hash for m in matches] == [
            yellow_large.content_hash, red.content_hash, orange.content_hash,
        ]
        assert matches[0].similarity == pytest.approx(1.0)
        assert matches[1].similarity == pytest.approx(2 / 3)

    def test_high_threshold(self, matcher, make_entry, solid_image):
        orange = make_entry(solid_image(ORANGE))
        yellow_large = make_entry(solid_image(YELLOW, (150, 120)))
        matches = matcher.find_similar(solid_image(YELLOW), [orange, yellow_large], 0.95)
        assert [m.entry.content_hash for m in matches] == [yellow_large.content_hash]

    def test_pattern_match(self, matcher, make_entry, pattern_image):
        entries = [make_entry(pattern_image(seed)) for seed in (1, 2, 3)]
        matches = matcher.find_similar(pattern_image(2, 128), entries, 0.9)
        assert matches[0].entry is entries[1]

    def test_empty_query(self, matcher, make_entry, solid_image):
        assert matcher.find_similar(b"", [make_entry(solid_image('red'))], 0.0) == []

    def test_no_candidates(self, matcher, solid_image):
        assert matcher.find_similar(solid_image('red'), [], 0.0) == []

    def test_skips_entries_without_signature(self, matcher, make_entry, solid_image):
        entry = make_entry(solid_image('red'))
        entry.signature = None
        assert matcher.find_similar(solid_image('red'), [entry], 0.0) == []

    def test_mismatch_propagates(self, matcher, make_entry, pattern_image):
        with SimilarityMatcher(hasher=ImageHasher(grid_size=4)) as small:
            foreign = make_entry(pattern_image(1), m=small)
        with pytest.raises(HashLengthMismatchError):
            matcher.find_similar(pattern_image(2), [foreign], 0.0)

    def test_accepts_signature_query(self, matcher, make_entry, solid_image):
        entry = make_entry(solid_image('red', (50, 50)))
        query = matcher.signature(solid_image('red'))
        matches = matcher.find_similar(query, [entry], 0.9)
        assert len(matches) == 1

    def test_failing_candidate_left_out(self, matcher, make_entry, solid_image, monkeypatch):
        """Test one broken comparison does not sink the whole search."""
        red = make_entry(solid_image('red'))
        red_large = make_entry(solid_image('red', (150, 120)))
        original = matcher._compare

        def compare(query, candidate):
            if candidate.content_hash == red.content_hash:
                raise RuntimeError("corrupt artifacts")
            return original(query, candidate)

        monkeypatch.setattr(matcher, '_compare', compare)
        matches = matcher.find_similar(solid_image('red', (50, 50)), [red, red_large], 0.5)

        assert [m.entry.content_hash for m in matches] == [red_large.content_hash]

    def test_batch_timeout_drops_slow_candidates(self, make_entry, solid_image, monkeypatch):
        with SimilarityMatcher(max_workers=2, batch_timeout=0.2) as m:
            slow = make_entry(solid_image('red'), m=m)
            fast = make_entry(solid_image('red', (150, 120)), m=m)
            original = m._compare

            def compare(query, candidate):
                if candidate.content_hash == slow.content_hash:
                    time.sleep(1.0)
                return original(query, candidate)

            monkeypatch.setattr(m, '_compare', compare)
            started = time.monotonic()
            matches = m.find_similar(solid_image('red', (50, 50)), [slow, fast], 0.5)

            assert time.monotonic() - started < 1.0
            assert [match.entry.content_hash for match in matches] == [fast.content_hash]
