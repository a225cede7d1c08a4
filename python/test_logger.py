#!/usr/bin/env python3
"""ロガーのテスト"""
import logging

from s3_upload_queue.models.config import LoggingConfig
from s3_upload_queue.utils.logger import LOGGER_NAME, LoggerManager


def test_logger(tmp_path):
    """ロガーが正しく動作するか確認"""
    LoggerManager.reset()
    log_file = tmp_path / "logs" / "s3_upload_queue.log"

    try:
        logger = LoggerManager.setup(LoggingConfig(level="INFO", file=str(log_file)))
        logger.info("ロガーのセットアップ成功")
        logger.debug("デバッグメッセージ（INFOレベルでは出力されない）")
        for handler in logger.handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "ロガーのセットアップ成功" in content
        assert "デバッグメッセージ" not in content
        assert LoggerManager.get_logger() is logger
    finally:
        LoggerManager.reset()


def test_setup_is_idempotent():
    """2回目の setup は最初のロガーを返す"""
    LoggerManager.reset()
    try:
        first = LoggerManager.setup(LoggingConfig(level="ERROR"))
        second = LoggerManager.setup(LoggingConfig(level="DEBUG"))

        assert first is second
        assert second.level == logging.ERROR
    finally:
        LoggerManager.reset()


def test_get_logger_before_setup():
    """setup 前でもパッケージのロガーを返す"""
    LoggerManager.reset()
    assert LoggerManager.get_logger().name == LOGGER_NAME
