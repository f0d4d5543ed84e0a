from aiogram.utils.keyboard import InlineKeyboardBuilder


def join_keyboard():
    keyboard = InlineKeyboardBuilder()
    keyboard.button(text="Join Secret Santa!", callback_data="join")
    return keyboard.as_markup()


def confirm_draw_keyboard():
    keyboard = InlineKeyboardBuilder()
    keyboard.button(text="Yes, draw names!", callback_data="confirm_draw")
    return keyboard.as_markup()
