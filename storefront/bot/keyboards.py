from aiogram.types import ReplyKeyboardMarkup, KeyboardButton


def main_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text="/help"), KeyboardButton(text="/dbstatus")],
            [KeyboardButton(text="/orders"), KeyboardButton(text="/lowstock")],
            [KeyboardButton(text="/backup"), KeyboardButton(text="/ping")],
        ],
        resize_keyboard=True,
    )
