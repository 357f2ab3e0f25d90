import re
import warnings

import aiohttp
import pytest

from mdsite.build import compile_site, ensure_source_root, prepare_output_root
from mdsite.config import SEED_DOCUMENT, SiteConfig

from .conftest import write_tree


def _title(html):
    return re.search(r"<title>(.*?)</title>", html).group(1)


def _nav_labels(html):
    return re.findall(r'<a href="[^"]*" class="(?:active)?"[^>]*>([^<]*)</a>', html)


@pytest.mark.asyncio
async def test_end_to_end_pages_and_navigation(site_config):
    write_tree(site_config.source_root, {"index.md": "# Hi", "guide/setup.md": "# Setup"})

    report = await compile_site(site_config)

    home = site_config.output_root / "index.html"
    setup = site_config.output_root / "guide" / "setup.html"
    assert home.is_file() and setup.is_file()
    assert [p.web_path for p in report.pages] == ["/index.html", "/guide/setup.html"]

    home_html = home.read_text(encoding="utf-8")
    setup_html = setup.read_text(encoding="utf-8")
    assert _title(home_html) == "Home"
    assert _title(setup_html) == "Setup"
    assert "<h1>Hi</h1>" in home_html
    assert "<h1>Setup</h1>" in setup_html

    for html in (home_html, setup_html):
        assert _nav_labels(html) == ["Home", "Guide", "Setup"]
        assert "EventSource" not in html

    assert [n.name for n in report.nav] == ["Home", "Guide"]
    assert [c.name for c in report.nav[1].children] == ["Setup"]
    assert 'href="/index.html" class="active" aria-current="page">Home' in home_html
    assert 'href="/guide/setup.html" class="active" aria-current="page">Setup' in setup_html


@pytest.mark.asyncio
async def test_missing_source_root_is_seeded(site_config):
    report = await compile_site(site_config)

    seeded = site_config.source_root / "index.md"
    assert seeded.read_text(encoding="utf-8") == SEED_DOCUMENT
    assert [p.web_path for p in report.pages] == ["/index.html"]
    assert "Hello World" in (site_config.output_root / "index.html").read_text(encoding="utf-8")


def test_ensure_source_root_leaves_existing_tree_alone(tmp_path):
    root = tmp_path / "md"
    root.mkdir()
    ensure_source_root(root)
    assert list(root.iterdir()) == []


@pytest.mark.asyncio
async def test_one_shot_build_replaces_output(site_config):
    write_tree(site_config.source_root, {"index.md": "# Hi"})
    stale = site_config.output_root / "old" / "page.html"
    stale.parent.mkdir(parents=True)
    stale.write_text("stale", encoding="utf-8")

    await compile_site(site_config)

    assert not stale.exists()
    assert (site_config.output_root / "index.html").is_file()


@pytest.mark.asyncio
async def test_live_build_keeps_output_and_injects_reload(site_config):
    write_tree(site_config.source_root, {"index.md": "# Hi"})
    keep = site_config.output_root / "notes.txt"
    keep.parent.mkdir(parents=True)
    keep.write_text("keep", encoding="utf-8")

    await compile_site(site_config, live_reload=True)

    assert keep.exists()
    html = (site_config.output_root / "index.html").read_text(encoding="utf-8")
    assert 'new EventSource("/__livereload__")' in html


@pytest.mark.asyncio
async def test_images_are_cached_and_orphans_swept(site_config, image_origin):
    url = image_origin.url("cat.png")
    write_tree(site_config.source_root, {"index.md": f"![cat]({url})"})
    orphan = site_config.output_root / "stale.png"
    orphan.parent.mkdir(parents=True)
    orphan.write_bytes(b"old")

    report = await compile_site(site_config, live_reload=True)

    cached = site_config.output_root / "cat.png"
    assert cached.is_file()
    assert report.touched_images == {cached}
    assert report.deleted_images == [orphan]
    assert not orphan.exists()
    html = (site_config.output_root / "index.html").read_text(encoding="utf-8")
    assert 'src="http://localhost:3000/cat.png"' in html

    # second live pass finds the cached copy on disk
    await compile_site(site_config, live_reload=True)
    assert image_origin.hits == {"cat.png": 1}

    # once the reference is gone the cached file becomes an orphan
    write_tree(site_config.source_root, {"index.md": "# No images"})
    report = await compile_site(site_config, live_reload=True)
    assert report.deleted_images == [cached]
    assert not cached.exists()


@pytest.mark.asyncio
async def test_failed_fetch_keeps_remote_url(site_config):
    write_tree(site_config.source_root, {"index.md": "![x](https://bad.example/img.png)"})

    class _Unreachable:
        def get(self, url):
            return self

        async def __aenter__(self):
            raise aiohttp.ClientConnectionError("unreachable")

        async def __aexit__(self, *exc):
            return False

    await compile_site(site_config, session=_Unreachable())

    html = (site_config.output_root / "index.html").read_text(encoding="utf-8")
    assert 'src="https://bad.example/img.png"' in html
    assert sorted(p.name for p in site_config.output_root.iterdir()) == ["index.html"]


@pytest.mark.asyncio
async def test_site_title_suffix(tmp_path):
    config = SiteConfig(
        source_root=tmp_path / "md", output_root=tmp_path / "public", site_title="Docs"
    )
    write_tree(config.source_root, {"getting-started.md": "text"})

    await compile_site(config)

    html = (config.output_root / "getting-started.html").read_text(encoding="utf-8")
    assert _title(html) == "Getting Started · Docs"


@pytest.mark.asyncio
async def test_bad_image_does_not_stop_the_build(site_config, image_origin):
    url = image_origin.url("huge.png")
    write_tree(site_config.source_root, {"index.md": f"![b]({url})", "other.md": "# Other"})

    report = await compile_site(site_config)

    assert [p.web_path for p in report.pages] == ["/index.html", "/other.html"]
    html = (site_config.output_root / "index.html").read_text(encoding="utf-8")
    assert f'src="{url}"' in html
    assert not (site_config.output_root / "huge.png").exists()


@pytest.mark.asyncio
async def test_non_utf8_document_still_renders(site_config):
    site_config.source_root.mkdir(parents=True)
    (site_config.source_root / "index.md").write_bytes(b"# Caf\xe9")

    await compile_site(site_config)

    html = (site_config.output_root / "index.html").read_text(encoding="utf-8")
    assert "<h1>Caf\ufffd</h1>" in html


def test_clean_output_wipe_is_warning_free(tmp_path):
    output = tmp_path / "public"
    (output / "sub").mkdir(parents=True)
    (output / "sub" / "page.html").write_text("old", encoding="utf-8")

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        prepare_output_root(output, clean=True)

    assert output.is_dir()
    assert list(output.iterdir()) == []
