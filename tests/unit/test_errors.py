"""
Unit tests for clipbot/core/errors.py
"""

import pytest

from clipbot.core.errors import (
    AcquisitionFailure,
    DeliveryFailure,
    InternalError,
    InvalidInput,
    PipelineError,
    ProcessingFailure,
    SizeLimitExceeded,
    classify,
)


class TestTaxonomy:
    """Tests for error codes and retry flags."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "error_cls,code,retryable",
        [
            (InvalidInput, "INVALID_INPUT", False),
            (AcquisitionFailure, "ACQUISITION_FAILED", True),
            (ProcessingFailure, "PROCESSING_FAILED", True),
            (SizeLimitExceeded, "SIZE_LIMIT_EXCEEDED", False),
            (DeliveryFailure, "DELIVERY_FAILED", False),
            (InternalError, "INTERNAL_ERROR", True),
        ],
    )
    def test_codes_and_flags(self, error_cls, code, retryable):
        error = error_cls("boom")

        assert isinstance(error, PipelineError)
        assert error.code == code
        assert error.retryable is retryable
        assert error.message == "boom"

    @pytest.mark.unit
    def test_empty_message_falls_back_to_code(self):
        assert SizeLimitExceeded().message == "SIZE_LIMIT_EXCEEDED"


class TestClassify:
    """Tests for classify."""

    @pytest.mark.unit
    def test_pipeline_errors_pass_through(self):
        error = DeliveryFailure("rejected")
        assert classify(error) is error

    @pytest.mark.unit
    def test_unknown_exceptions_become_internal(self):
        error = classify(KeyError("duration"))

        assert isinstance(error, InternalError)
        assert error.retryable
        assert error.message == "KeyError: 'duration'"
