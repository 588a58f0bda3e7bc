import logging
import traceback
from typing import Any, MutableMapping, Optional, Tuple


DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
	"""Configure root logging once. Later calls only change the level.
	If fmt is not provided, a sensible default is used.
	"""
	root = logging.getLogger()
	if root.handlers:
		root.setLevel(level)
		return
	logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name."""
	return logging.getLogger(name) if name else logging.getLogger(__name__)


class FieldLogger(logging.LoggerAdapter):
	"""Logger adapter that prefixes every message with key=value fields.

	Decisions are audited per repository, tag and digest, so those fields are
	carried on the adapter instead of being repeated in each message:

		log = with_fields(logger, repo="app")
		log.with_fields(tag="v1").info("Marking tag as outdated")
		# -> "repo=app tag=v1 | Marking tag as outdated"
	"""

	def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
		if not self.extra:
			return msg, kwargs
		fields = " ".join(f"{key}={value}" for key, value in self.extra.items())
		return f"{fields} | {msg}", kwargs

	def with_fields(self, **fields: Any) -> "FieldLogger":
		merged = dict(self.extra or {})
		merged.update(fields)
		return FieldLogger(self.logger, merged)


def with_fields(logger: logging.Logger, **fields: Any) -> FieldLogger:
	return FieldLogger(logger, fields)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
