from .code_generator import generate_batch_number, generate_sale_code
from .timezone_utils import TimezoneUtils

__all__ = ["generate_batch_number", "generate_sale_code", "TimezoneUtils"]
