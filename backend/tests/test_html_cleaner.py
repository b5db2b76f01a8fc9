from backend.app.services.html_cleaner import clean_html_content


def test_anchor_keeps_text_and_url():
    out = clean_html_content('<a href="https://x.example/u">Unsubscribe here</a>')
    assert "Unsubscribe here" in out
    assert "https://x.example/u" in out


def test_document_chrome_is_stripped():
    html = (
        '<!DOCTYPE html><html><head><title>Promo</title><style>p{color:red}</style></head>'
        '<body><!-- tracking --><script>var x = 1;</script>'
        '<p>Big summer sale on all items &amp; more&nbsp;today</p></body></html>'
    )
    out = clean_html_content(html)
    assert out == "Big summer sale on all items & more today"
    assert "color" not in out
    assert "var x" not in out


def test_outlook_conditional_blocks_removed():
    html = '<!--[if mso]><xml><o:OfficeDocumentSettings></o:OfficeDocumentSettings></xml><![endif]--><div>Quarterly report attached for review</div>'
    assert clean_html_content(html) == "Quarterly report attached for review"


def test_falls_back_to_raw_input_when_structural_pass_leaves_little():
    # short results are recomputed from the untouched input
    out = clean_html_content('<p>Hi</p>')
    assert out == "Hi"


def test_total_on_awkward_inputs():
    samples = [
        "",
        "plain text only",
        "<div><span>unterminated",
        "<!-- <!-- nested --> -->",
        "&#xZZ; &bogus; &#99999999;",
        "<a href='single-quoted'>x</a>",
        "<" * 50 + ">" * 50,
        "éè <b>😀</b>",
    ]
    for s in samples:
        assert isinstance(clean_html_content(s), str)


def test_none_and_non_string():
    assert clean_html_content(None) == ""
    assert clean_html_content(12345) == "12345"
