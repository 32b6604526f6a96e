"""
shared/utils/constants.py
Reference data for fixtures and referee profiles.
"""

UK_COUNTIES = tuple(sorted([
    "Aberdeenshire", "Angus", "Antrim", "Argyll", "Armagh", "Ayrshire", "Banffshire", "Bedfordshire",
    "Berkshire", "Berwickshire", "Buckinghamshire", "Buteshire", "Caithness", "Cambridgeshire",
    "Cardiganshire", "Carmarthenshire", "Cheshire", "Clackmannanshire", "Cornwall", "Cromartyshire",
    "Cumberland", "Denbighshire", "Derbyshire", "Devon", "Dorset", "Down", "Dumfriesshire",
    "Dunbartonshire", "Durham", "East Lothian", "Essex", "Fermanagh", "Fife", "Flintshire",
    "Glamorgan", "Gloucestershire", "Hampshire", "Herefordshire", "Hertfordshire", "Huntingdonshire",
    "Inverness-shire", "Kent", "Kincardineshire", "Kinross-shire", "Kirkcudbrightshire", "Lanarkshire",
    "Lancashire", "Leicestershire", "Lincolnshire", "London", "Londonderry", "Merionethshire",
    "Middlesex", "Midlothian", "Monmouthshire", "Montgomeryshire", "Morayshire", "Nairnshire",
    "Norfolk", "Northamptonshire", "Northumberland", "Nottinghamshire", "Orkney", "Oxfordshire",
    "Peeblesshire", "Pembrokeshire", "Perthshire", "Radnorshire", "Renfrewshire", "Ross-shire",
    "Roxburghshire", "Rutland", "Selkirkshire", "Shetland", "Shropshire", "Somerset", "Staffordshire",
    "Stirlingshire", "Suffolk", "Surrey", "Sussex", "Sutherland", "Tyrone", "Warwickshire",
    "West Lothian", "Westmorland", "Wigtownshire", "Wiltshire", "Worcestershire", "Yorkshire",
]))

MATCH_FORMAT_LABELS = {
    "5v5": "5-a-side",
    "7v7": "7-a-side",
    "9v9": "9-a-side",
    "11v11": "11-a-side",
}

COMPETITION_TYPE_LABELS = {
    "league": "League Match",
    "cup": "Cup Match",
    "friendly": "Friendly",
    "tournament": "Tournament",
    "other": "Other",
}

AGE_GROUPS = {
    "u7": "Under 7s",
    "u8": "Under 8s",
    "u9": "Under 9s",
    "u10": "Under 10s",
    "u11": "Under 11s",
    "u12": "Under 12s",
    "u13": "Under 13s",
    "u14": "Under 14s",
    "u15": "Under 15s",
    "u16": "Under 16s",
    "u17": "Under 17s",
    "u18": "Under 18s",
    "adult": "Adult",
    "veterans": "Veterans",
}
