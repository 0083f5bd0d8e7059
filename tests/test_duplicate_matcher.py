# tests/test_duplicate_matcher.py

import pytest

from config import MatchingConfig, UrlNormalizationConfig
from core.corpus import CorpusEntry
from core.duplicate_matcher import (DuplicateMatcher, MatchType, check_duplicates,
                                    CONTEXT_REASON, EXACT_REASON)
from core.errors import ConfigurationError, InvalidFingerprintError
from core.fingerprint import Fingerprint
from core.url_normalizer import URLNormalizer
from tests.conftest import flip_bits

PHASH = '1001' * 256
AHASH = '0110' * 16
DHASH = '1100' * 16


def make_fp(digest="d" * 64, phash=PHASH, ahash=AHASH, dhash=DHASH,
            source_url="https://example.com/img.jpg", page_url="https://example.com/page"):
    return Fingerprint(exact_digest=digest, phash=phash, ahash=ahash, dhash=dhash,
                       width=100, height=100, byte_size=1000,
                       source_url=source_url, page_url=page_url)


def far_fp(digest="f" * 64, **kwargs):
    """Every perceptual hash fully inverted relative to the defaults"""
    values = dict(phash=flip_bits(PHASH, 1024),
                  ahash=flip_bits(AHASH, 64),
                  dhash=flip_bits(DHASH, 64))
    values.update(kwargs)
    return make_fp(digest=digest, **values)


@pytest.fixture
def matcher():
    return DuplicateMatcher()


def test_exact_match_with_different_source(matcher):
    corpus = [CorpusEntry("item-1", make_fp(digest="abc123", phash=None, ahash=None, dhash=None,
                                            source_url="https://other.example/a.jpg"))]
    candidate = make_fp(digest="abc123", phash=None, ahash=None, dhash=None,
                        source_url="https://example.com/b.jpg")

    report = matcher.check(candidate, corpus)

    assert report.is_duplicate
    assert len(report.all_matches) == 1
    record = report.all_matches[0]
    assert record.match_type == MatchType.EXACT
    assert record.matched_id == "item-1"
    assert record.reason == EXACT_REASON
    assert report.first_exact_match is record
    assert report.first_context_match is None


def test_context_match_without_content_overlap(matcher):
    stored = far_fp(source_url="https://i.imgur.com/abc.jpg?t=1",
                    page_url="https://imgur.com/gallery/abc")
    candidate = make_fp(source_url="https://i.imgur.com/abc.jpg?t=999",
                        page_url="https://imgur.com/gallery/abc")

    report = matcher.check(candidate, [CorpusEntry("ctx", stored)])

    assert [m.match_type for m in report.all_matches] == [MatchType.CONTEXT]
    assert report.all_matches[0].reason == CONTEXT_REASON
    assert report.first_exact_match is None
    assert report.first_visual_match is None


def test_context_requires_both_urls(matcher):
    stored = far_fp(source_url="https://example.com/img.jpg", page_url="https://example.com/other")
    report = matcher.check(make_fp(), [CorpusEntry(1, stored)])
    assert not report.is_duplicate


def test_local_candidate_never_context_matches(matcher):
    stored = far_fp(source_url="", page_url="")
    candidate = make_fp(source_url="", page_url="")

    report = matcher.check(candidate, [CorpusEntry(1, stored)])

    assert not report.is_duplicate


def test_local_candidate_context_match_when_enabled():
    stored = far_fp(source_url="", page_url="")
    candidate = make_fp(source_url="", page_url="")
    matcher = DuplicateMatcher(MatchingConfig(match_empty_source_url=True))

    report = matcher.check(candidate, [CorpusEntry(1, stored)])

    assert [m.match_type for m in report.all_matches] == [MatchType.CONTEXT]
    assert report.first_context_match.reason == CONTEXT_REASON


@pytest.mark.parametrize("distance,expected", [(15, True), (16, False)])
def test_ahash_threshold_boundary(matcher, distance, expected):
    stored = far_fp(ahash=flip_bits(AHASH, distance), source_url="https://other.example/x.jpg")
    stored.phash = None
    stored.dhash = None

    report = matcher.check(make_fp(), [CorpusEntry("v", stored)])

    assert report.is_duplicate is expected
    if expected:
        record = report.first_visual_match
        vote = record.hash_votes['aHash']
        assert vote.distance == 15
        assert vote.matched is True
        assert record.vote_count == 1
        assert record.matched_hashes == ['aHash']


def test_no_false_positive(matcher):
    corpus = [
        CorpusEntry(i, far_fp(digest=f"{i:064x}", source_url=f"https://other.example/{i}.jpg"))
        for i in range(5)
    ]

    report = matcher.check(make_fp(), corpus)

    assert report.is_duplicate is False
    assert report.all_matches == []
    assert report.corpus_size == 5


def test_visual_similarity_is_mean_of_compared_hashes(matcher):
    stored = make_fp(digest="e" * 64,
                     phash=flip_bits(PHASH, 64),     # 93.75%
                     ahash=flip_bits(AHASH, 8),      # 87.5%
                     dhash=flip_bits(DHASH, 32),     # 50.0%, beyond threshold
                     source_url="https://other.example/x.jpg")

    report = matcher.check(make_fp(), [CorpusEntry("v", stored)])

    record = report.first_visual_match
    assert record.vote_count == 2
    assert record.matched_hashes == ['pHash', 'aHash']
    assert record.hash_votes['dHash'].matched is False
    assert record.similarity == pytest.approx((93.75 + 87.5 + 50.0) / 3)
    assert record.reason == "visually similar (2/3 hashes: pHash, aHash)"


def test_length_mismatch_cannot_match_and_is_not_averaged(matcher):
    stored = make_fp(digest="e" * 64, phash=PHASH[:64], ahash=AHASH, dhash=None,
                     source_url="https://other.example/x.jpg")

    record = matcher.check(make_fp(), [CorpusEntry("v", stored)]).first_visual_match

    assert record.hash_votes['pHash'].matched is False
    assert record.hash_votes['pHash'].comparable is False
    assert 'dHash' not in record.hash_votes
    assert record.similarity == 100.0


def test_quorum_of_two():
    matcher = DuplicateMatcher(MatchingConfig(match_quorum=2))
    one_vote = far_fp(digest="1" * 64, ahash=AHASH, source_url="https://other.example/1.jpg")
    two_votes = far_fp(digest="2" * 64, ahash=AHASH, dhash=DHASH,
                       source_url="https://other.example/2.jpg")

    report = matcher.check(make_fp(), [CorpusEntry("one", one_vote), CorpusEntry("two", two_votes)])

    assert [m.matched_id for m in report.all_matches] == ["two"]


def test_custom_thresholds():
    stored = far_fp(ahash=flip_bits(AHASH, 20), source_url="https://other.example/x.jpg")
    strict = DuplicateMatcher(MatchingConfig(ahash_threshold=15))
    lenient = DuplicateMatcher(MatchingConfig(ahash_threshold=20))

    assert not strict.check(make_fp(), [CorpusEntry(1, stored)]).is_duplicate
    assert lenient.check(make_fp(), [CorpusEntry(1, stored)]).is_duplicate


def test_exhaustive_scan_orders_matches_by_phase(matcher):
    candidate = make_fp()
    corpus = [
        CorpusEntry("visual", make_fp(digest="1" * 64, source_url="https://other.example/v.jpg")),
        CorpusEntry("exact-a", far_fp(digest=candidate.exact_digest, source_url="https://a.example/1.jpg")),
        CorpusEntry("context", far_fp(digest="2" * 64)),
        CorpusEntry("exact-b", far_fp(digest=candidate.exact_digest, source_url="https://b.example/2.jpg")),
    ]

    report = matcher.check(candidate, corpus)

    assert [(m.match_type, m.matched_id) for m in report.all_matches] == [
        (MatchType.CONTEXT, "context"),
        (MatchType.EXACT, "exact-a"),
        (MatchType.EXACT, "exact-b"),
        (MatchType.VISUAL, "visual"),
    ]
    assert report.counts() == {MatchType.CONTEXT: 1, MatchType.EXACT: 2, MatchType.VISUAL: 1}
    assert report.first_exact_match.matched_id == "exact-a"


def test_identical_entry_reported_by_every_phase(matcher):
    candidate = make_fp()
    report = matcher.check(candidate, [CorpusEntry("same", make_fp())])

    assert [m.match_type for m in report.all_matches] == [
        MatchType.CONTEXT, MatchType.EXACT, MatchType.VISUAL
    ]


def test_stop_at_first_match():
    matcher = DuplicateMatcher(MatchingConfig(stop_at_first_match=True))
    candidate = make_fp()
    corpus = [
        CorpusEntry("exact-a", far_fp(digest=candidate.exact_digest, source_url="https://a.example/1.jpg")),
        CorpusEntry("exact-b", far_fp(digest=candidate.exact_digest, source_url="https://b.example/2.jpg")),
    ]

    report = matcher.check(candidate, corpus)

    assert [m.matched_id for m in report.all_matches] == ["exact-a"]


def test_missing_hashes_on_stored_entry_are_skipped(matcher):
    stored = Fingerprint(exact_digest="x" * 64, source_url="https://other.example/x.jpg")
    report = matcher.check(make_fp(), [CorpusEntry("bare", stored)])
    assert not report.is_duplicate


def test_accepts_pairs_and_raw_records(matcher):
    candidate = make_fp()
    corpus = [
        ("pair", far_fp(digest=candidate.exact_digest, source_url="https://a.example/1.jpg")),
        {'id': 'record', 'sha256': candidate.exact_digest, 'sourceImageUrl': 'https://b.example/2.jpg'},
        {'sha256': candidate.exact_digest},  # no id, skipped
    ]

    report = matcher.check(candidate, corpus)

    assert [m.matched_id for m in report.all_matches] == ["pair", "record"]
    assert report.corpus_size == 2


def test_corpus_is_not_mutated(matcher):
    corpus = [CorpusEntry("same", make_fp())]
    snapshot = list(corpus)
    matcher.check(make_fp(), corpus)
    assert corpus == snapshot


@pytest.mark.parametrize("candidate", [
    None,
    {"exactDigest": "abc"},
    Fingerprint(exact_digest=""),
    Fingerprint(exact_digest="abc", ahash="01x0"),
])
def test_invalid_candidate(matcher, candidate):
    progress = []
    with pytest.raises(InvalidFingerprintError):
        matcher.check(candidate, [CorpusEntry(1, make_fp())], on_progress=progress.append)
    assert progress == []


def test_progress_messages():
    matcher = DuplicateMatcher(MatchingConfig(progress_interval=2))
    corpus = [CorpusEntry(i, far_fp(digest=f"{i:064x}", source_url=f"https://o.example/{i}"))
              for i in range(4)]
    messages = []

    matcher.check(make_fp(), corpus, on_progress=messages.append)

    assert messages[0] == "Phase 1: Checking context..."
    assert "Phase 1: checked 2/4" in messages
    assert "Phase 3: checked 4/4" in messages
    assert "Phase 2: Checking exact file match..." in messages
    assert messages[-1] == "No duplicates found"


def test_failing_progress_sink_does_not_affect_result(matcher):
    def broken(message):
        raise RuntimeError("sink down")

    report = matcher.check(make_fp(), [CorpusEntry("same", make_fp())], on_progress=broken)
    assert report.is_duplicate


def test_essential_param_option_reaches_context_phase():
    normalizer = URLNormalizer(UrlNormalizationConfig(keep_social_essential_params=True))
    matcher = DuplicateMatcher(normalizer=normalizer)
    stored = far_fp(source_url="https://scontent.fbcdn.net/p.jpg?fbid=1&oh=a", page_url="")
    candidate = make_fp(source_url="https://scontent.fbcdn.net/p.jpg?fbid=2&oh=a", page_url="")

    assert not matcher.check(candidate, [CorpusEntry(1, stored)]).is_duplicate
    assert DuplicateMatcher().check(candidate, [CorpusEntry(1, stored)]).is_duplicate


@pytest.mark.parametrize("config", [
    MatchingConfig(match_quorum=0),
    MatchingConfig(match_quorum=4),
    MatchingConfig(ahash_threshold=-1),
    MatchingConfig(progress_interval=0),
])
def test_invalid_config_is_rejected(config):
    with pytest.raises(ConfigurationError):
        DuplicateMatcher(config)


def test_report_to_dict(matcher):
    report = check_duplicates(make_fp(), [CorpusEntry("same", make_fp())])
    data = report.to_dict()

    assert data['isDuplicate'] is True
    assert [m['matchType'] for m in data['allMatches']] == ['context', 'exact', 'visual']
    assert data['firstVisualMatch']['hashVotes']['pHash'] == {
        'distance': 0, 'matched': True, 'similarity': 100.0
    }
    assert data['firstVisualMatch']['voteCount'] == 3
