"""Reply formatting and the async retry helper."""
import pytest
from google.api_core import exceptions as google_exceptions

from learniamo.errors import is_transient_upstream_error
from learniamo.utils.formatting import format_reply_for_display
from learniamo.utils.retry import with_retry


def test_paragraphs_are_wrapped_and_escaped():
    text = "Ciao!\n\nIn Italian, <b>hello</b> is \"ciao\".\n  \nA presto."
    assert format_reply_for_display(text) == (
        "<p>Ciao!</p>"
        "<p>In Italian, &lt;b&gt;hello&lt;/b&gt; is &quot;ciao&quot;.</p>"
        "<p>A presto.</p>"
    )


def test_empty_reply_formats_to_empty_string():
    assert format_reply_for_display("") == ""
    assert format_reply_for_display("  \n\n ") == ""


@pytest.mark.asyncio
async def test_with_retry_retries_transient_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise google_exceptions.ServiceUnavailable("busy")
        return "ok"

    result = await with_retry(flaky, is_transient=is_transient_upstream_error, max_retries=3, initial_delay=0.001)
    assert result == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors():
    attempts = []

    async def denied():
        attempts.append(1)
        raise google_exceptions.PermissionDenied("no")

    with pytest.raises(google_exceptions.PermissionDenied):
        await with_retry(denied, is_transient=is_transient_upstream_error, max_retries=3, initial_delay=0.001)
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_with_retry_gives_up_after_max_retries():
    attempts = []

    async def down():
        attempts.append(1)
        raise google_exceptions.ServiceUnavailable("down")

    with pytest.raises(google_exceptions.ServiceUnavailable):
        await with_retry(down, is_transient=is_transient_upstream_error, max_retries=2, initial_delay=0.001)
    assert len(attempts) == 2
