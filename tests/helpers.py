def member_ids(conversation):
    return sorted(m["_id"] if isinstance(m, dict) else m for m in conversation["members"])


def topics_of(events):
    return [name for name, _ in events]


def naive(value):
    return value.replace(tzinfo=None)
