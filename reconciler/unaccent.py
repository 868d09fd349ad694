import unicodedata


def remove_diacritics(text):
    # "Jan Novák" -> "Jan Novak", aby porovnání jmen nezáviselo na diakritice
    normalized = unicodedata.normalize('NFD', text or '')
    # Ponechá pouze znaky, které nejsou "kombinační značky" (diakritika)
    return "".join(c for c in normalized if unicodedata.category(c) != 'Mn')
