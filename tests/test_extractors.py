# download-link-service/tests/test_extractors.py
from extractors import ExtractedDownload, extract_download, extract_pcloud, host_matches

PCLOUD_URL = "https://u.pcloud.link/publink/show?code=kZ9"


def page(*scripts):
    body = "".join(f"<script>{script}</script>" for script in scripts)
    return f"<html><head>{body}</head><body></body></html>"


def test_extracts_link_and_filename():
    html = page(
        'var publinkData = {"downloadlink":"https:\\/\\/x\\/f",'
        '"metadata":{"name":"report.pdf"}};'
    )
    assert extract_download(html, PCLOUD_URL) == ExtractedDownload(
        download_link="https://x/f", filename="report.pdf"
    )


def test_without_marker_returns_none():
    html = page('var other = {"downloadlink":"https:\\/\\/x\\/f"};')
    assert extract_download(html, PCLOUD_URL) is None


def test_marker_without_download_link_returns_none():
    html = page('var publinkData = {"metadata":{"name":"a.txt"}};')
    assert extract_download(html, PCLOUD_URL) is None


def test_unparsable_metadata_keeps_link():
    html = page(
        'var publinkData = {"downloadlink":"https:\\/\\/x\\/f","metadata":{name: broken}};'
    )
    assert extract_download(html, PCLOUD_URL) == ExtractedDownload("https://x/f", None)


def test_only_first_marked_script_counts():
    html = page(
        'publinkData = {"result": 7000};',
        'publinkData = {"downloadlink":"https:\\/\\/x\\/second"};',
    )
    assert extract_pcloud(html) is None


def test_unsupported_host_is_skipped():
    html = page('var publinkData = {"downloadlink":"https:\\/\\/x\\/f"};')
    assert extract_download(html, "https://example.com/share/abc") is None
    assert extract_download(html, "https://notpcloud.com/x") is None


def test_host_matches_subdomains():
    matches = host_matches("pcloud.com")
    assert matches("https://pcloud.com/x")
    assert matches("https://E.PCLOUD.COM/x")
    assert not matches("https://pcloud.com.evil.net/x")
    assert not matches("not a url")
