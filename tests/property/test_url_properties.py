"""Property-based tests for URL normalization and content hashing."""

from __future__ import annotations

import pytest

hypothesis = pytest.importorskip("hypothesis")
from hypothesis import given, settings, strategies as st

from bookmark_sync.core.hashing import content_hash
from bookmark_sync.core.url_utils import TRACKING_PARAMS, normalize_url

_host = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=20)
_path = st.lists(
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-_", min_size=1, max_size=12),
    max_size=4,
).map(lambda parts: "/" + "/".join(parts))
_param_key = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=8).filter(
    lambda key: key not in TRACKING_PARAMS
)
_param_value = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", max_size=8)


class TestNormalizationProperties:
    @given(
        scheme=st.sampled_from(["http", "https", "HTTP", "HTTPS"]),
        host=_host,
        path=_path,
        params=st.dictionaries(_param_key, _param_value, max_size=5),
        trailing=st.booleans(),
    )
    @settings(max_examples=200, deadline=None)
    def test_idempotent(self, scheme, host, path, params, trailing):
        query = "&".join(f"{k}={v}" for k, v in params.items())
        url = f"{scheme}://{host}.com{path}{'/' if trailing else ''}"
        if query:
            url = f"{url}?{query}"

        once = normalize_url(url)
        assert normalize_url(once) == once

    @given(
        host=_host,
        path=_path,
        params=st.dictionaries(_param_key, _param_value, max_size=5),
        tracking=st.lists(st.sampled_from(sorted(TRACKING_PARAMS)), max_size=4, unique=True),
        order=st.randoms(use_true_random=False),
    )
    @settings(max_examples=200, deadline=None)
    def test_insensitive_to_tracking_params_and_order(self, host, path, params, tracking, order):
        base = f"https://{host}.com{path}"
        clean = "&".join(f"{k}={v}" for k, v in params.items())

        noisy_pairs = [f"{k}={v}" for k, v in params.items()] + [f"{t}=x" for t in tracking]
        order.shuffle(noisy_pairs)
        noisy = "&".join(noisy_pairs)

        left = f"{base}?{clean}" if clean else base
        right = f"{base}?{noisy}" if noisy else base
        assert normalize_url(left) == normalize_url(right)

    @given(url=st.text(max_size=200))
    @settings(max_examples=300, deadline=None)
    def test_never_raises(self, url):
        assert isinstance(normalize_url(url), str)


class TestContentHashProperties:
    @given(url=st.text(max_size=100), title=st.text(max_size=100))
    @settings(max_examples=200, deadline=None)
    def test_stable_across_calls(self, url, title):
        assert content_hash(url, title) == content_hash(url, title)

    @given(host=_host, title=st.text(min_size=1, max_size=40))
    @settings(max_examples=200, deadline=None)
    def test_title_change_changes_hash(self, host, title):
        url = f"https://{host}.com/"
        changed = title.strip() + "!"
        assert content_hash(url, title) != content_hash(url, changed)
