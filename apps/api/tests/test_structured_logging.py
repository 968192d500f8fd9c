from formrelay.core.structured_logging import build_log_context, mask_email, token_prefix


def test_mask_email_hides_address():
    masked = mask_email("Jane.Doe@Example.com")

    assert "jane.doe" not in masked
    assert masked.startswith("ja***@example.com#")
    assert masked == mask_email("jane.doe@example.com")


def test_build_log_context_masks_pii():
    context = build_log_context(
        form_token="abcdefghijklmnop",
        mailbox="recruiter@agency.com",
        provider="google",
    )

    assert context["form_token"] == "abcdefgh..."
    assert "recruiter@agency.com" not in str(context)
    assert context["provider"] == "google"
    assert "case_id" not in context


def test_token_prefix_empty():
    assert token_prefix(None) == ""
