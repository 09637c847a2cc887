# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Property-based fuzz tests using Hypothesis.

Verifies invariants hold for arbitrary inputs across the navigation guard,
ref parsing, page bounding, snapshot parsing and chat escaping.
"""

from __future__ import annotations

import ipaddress

import pytest
from hypothesis import HealthCheck, example, given, settings
from hypothesis import strategies as st

from chatbrowse import PageInput, PageLink
from chatbrowse.backend import build_page_info, parse_ref
from chatbrowse.config import MAX_LINK_LABEL_LENGTH, BrowseConfig
from chatbrowse.errors import GuardRejection, InvalidReferenceError
from chatbrowse.formatting import escape_markdown
from chatbrowse.remote_backend import parse_inputs, parse_links
from chatbrowse.url_guard import check_url, validate_url

# ---------------------------------------------------------------------------
# Module-level strategies
# ---------------------------------------------------------------------------

GENERAL_TEXT = st.text(min_size=0, max_size=2000)

PRIVATE_V4 = st.one_of(
    st.ip_addresses(network="10.0.0.0/8"),
    st.ip_addresses(network="172.16.0.0/12"),
    st.ip_addresses(network="192.168.0.0/16"),
    st.ip_addresses(network="127.0.0.0/8"),
    st.ip_addresses(network="169.254.0.0/16"),
)

LINKS = st.lists(
    st.builds(PageLink, label=st.text(max_size=300), url=st.just("https://example.com/")),
    max_size=80,
)

INPUTS = st.lists(
    st.builds(PageInput, ref=st.text(max_size=5), type=st.just("text"), placeholder=st.text(max_size=20)),
    max_size=40,
)

_fuzz_settings = settings(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzGuard:
    @_fuzz_settings
    @given(addr=PRIVATE_V4, scheme=st.sampled_from(["http", "https"]))
    def test_private_ipv4_always_blocked(self, addr, scheme):
        assert validate_url(f"{scheme}://{addr}/") is not None

    @_fuzz_settings
    @given(addr=PRIVATE_V4)
    def test_decimal_spelling_blocked(self, addr):
        assert validate_url(f"http://{int(ipaddress.IPv4Address(addr))}/") is not None

    @_fuzz_settings
    @given(addr=PRIVATE_V4, parts=st.integers(min_value=1, max_value=4), radix=st.sampled_from(["dec", "hex", "oct"]))
    def test_short_and_mixed_radix_spellings_blocked(self, addr, parts, radix):
        num = int(ipaddress.IPv4Address(addr))
        head = [(num >> (8 * (3 - i))) & 0xFF for i in range(parts - 1)]
        last = num & ((1 << (8 * (5 - parts))) - 1)
        spell = {"dec": str, "hex": hex, "oct": lambda v: f"0{v:o}"}[radix]
        host = ".".join([str(v) for v in head] + [spell(last)])
        assert validate_url(f"http://{host}/") is not None

    @_fuzz_settings
    @given(raw=GENERAL_TEXT)
    @example("ftp://internal")
    @example("http://127.1/")
    @example("http://[::]/")
    @example("javascript:alert(1)")
    @example("http://[::1")
    def test_check_url_never_raises_unexpectedly(self, raw):
        try:
            url = check_url(raw)
        except GuardRejection:
            return
        assert url.lower().startswith(("http://", "https://"))


# ---------------------------------------------------------------------------
# Refs and bounds
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzRefs:
    @_fuzz_settings
    @given(ref=st.text(max_size=10))
    def test_parse_ref_returns_index_or_raises(self, ref):
        try:
            index = parse_ref(ref)
        except InvalidReferenceError:
            return
        assert index >= 0

    @_fuzz_settings
    @given(n=st.integers(min_value=0, max_value=10**6))
    def test_parse_ref_accepts_every_non_negative_int(self, n):
        assert parse_ref(str(n)) == n


@pytest.mark.fuzz
class TestFuzzBounds:
    @_fuzz_settings
    @given(text=GENERAL_TEXT, links=LINKS, inputs=INPUTS)
    def test_page_info_respects_bounds(self, text, links, inputs):
        config = BrowseConfig()
        info = build_page_info(
            url="https://example.com", title="", text=text, links=links, inputs=inputs, config=config
        )
        assert len(info.text) <= config.max_text_length
        assert len(info.links) <= config.max_links
        assert len(info.inputs) <= config.max_inputs
        assert all(len(link.label) <= MAX_LINK_LABEL_LENGTH for link in info.links)
        assert info.title == "https://example.com"


# ---------------------------------------------------------------------------
# Parsing and escaping
# ---------------------------------------------------------------------------


@pytest.mark.fuzz
class TestFuzzParsing:
    @_fuzz_settings
    @given(content=GENERAL_TEXT)
    def test_snapshot_parsers_never_crash(self, content):
        for link in parse_links(content):
            assert link.url.lower().startswith(("http://", "https://"))
        for field in parse_inputs(content):
            assert field.ref.isdigit()

    @_fuzz_settings
    @given(text=GENERAL_TEXT)
    def test_escape_leaves_no_bare_special(self, text):
        escaped = escape_markdown(text)
        i = 0
        while i < len(escaped):
            if escaped[i] == "\\":
                i += 2
                continue
            assert escaped[i] not in "_*[]()~`>#+-=|{}.!"
            i += 1
