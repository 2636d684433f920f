import re

from django import forms

COUNTRY_CHOICES = [
    ("us", "🇺🇸 United States"),
    ("gb", "🇬🇧 United Kingdom"),
    ("ca", "🇨🇦 Canada"),
    ("au", "🇦🇺 Australia"),
    ("de", "🇩🇪 Germany"),
    ("fr", "🇫🇷 France"),
    ("es", "🇪🇸 Spain"),
    ("it", "🇮🇹 Italy"),
    ("jp", "🇯🇵 Japan"),
    ("kr", "🇰🇷 South Korea"),
    ("cn", "🇨🇳 China"),
    ("tw", "🇹🇼 Taiwan"),
    ("hk", "🇭🇰 Hong Kong"),
    ("sg", "🇸🇬 Singapore"),
    ("in", "🇮🇳 India"),
    ("br", "🇧🇷 Brazil"),
    ("mx", "🇲🇽 Mexico"),
    ("ar", "🇦🇷 Argentina"),
    ("cl", "🇨🇱 Chile"),
    ("co", "🇨🇴 Colombia"),
    ("nl", "🇳🇱 Netherlands"),
    ("be", "🇧🇪 Belgium"),
    ("se", "🇸🇪 Sweden"),
    ("no", "🇳🇴 Norway"),
    ("dk", "🇩🇰 Denmark"),
    ("fi", "🇫🇮 Finland"),
    ("pl", "🇵🇱 Poland"),
    ("cz", "🇨🇿 Czech Republic"),
    ("at", "🇦🇹 Austria"),
    ("ch", "🇨🇭 Switzerland"),
    ("pt", "🇵🇹 Portugal"),
    ("ru", "🇷🇺 Russia"),
    ("tr", "🇹🇷 Turkey"),
    ("ae", "🇦🇪 UAE"),
    ("sa", "🇸🇦 Saudi Arabia"),
    ("il", "🇮🇱 Israel"),
    ("za", "🇿🇦 South Africa"),
    ("nz", "🇳🇿 New Zealand"),
    ("ph", "🇵🇭 Philippines"),
    ("th", "🇹🇭 Thailand"),
    ("my", "🇲🇾 Malaysia"),
    ("id", "🇮🇩 Indonesia"),
    ("vn", "🇻🇳 Vietnam"),
    ("ie", "🇮🇪 Ireland"),
    ("gr", "🇬🇷 Greece"),
    ("hu", "🇭🇺 Hungary"),
    ("ro", "🇷🇴 Romania"),
    ("bg", "🇧🇬 Bulgaria"),
    ("sk", "🇸🇰 Slovakia"),
    ("hr", "🇭🇷 Croatia"),
    ("si", "🇸🇮 Slovenia"),
    ("ua", "🇺🇦 Ukraine"),
    ("eg", "🇪🇬 Egypt"),
    ("ng", "🇳🇬 Nigeria"),
    ("ke", "🇰🇪 Kenya"),
    ("pe", "🇵🇪 Peru"),
    ("ve", "🇻🇪 Venezuela"),
    ("ec", "🇪🇨 Ecuador"),
    ("pk", "🇵🇰 Pakistan"),
    ("bd", "🇧🇩 Bangladesh"),
]

MAX_KEYWORDS_PER_BATCH = 50


def _clean_country(value):
    code = (value or "").strip().lower()
    valid_codes = {c for c, _ in COUNTRY_CHOICES}
    if code not in valid_codes:
        raise forms.ValidationError(f"Unknown country code: {value}")
    return code


class AddAppForm(forms.Form):
    """Track an App Store app by its trackId."""

    track_id = forms.IntegerField(min_value=1)
    country = forms.CharField(required=False)

    def clean_country(self):
        raw = self.cleaned_data.get("country", "")
        if not raw:
            return ""
        return _clean_country(raw)


class KeywordAddForm(forms.Form):
    """Add one or more keywords (comma- or newline-separated) to an app."""

    keywords = forms.CharField(
        help_text=f"One or more keywords, separated by commas or new lines (max {MAX_KEYWORDS_PER_BATCH}).",
    )
    country = forms.CharField(required=False)
    fetch_rank = forms.BooleanField(required=False)

    def clean_keywords(self):
        raw = self.cleaned_data.get("keywords", "")
        keywords = [kw.strip() for kw in re.split(r"[,\n]", raw) if kw.strip()]
        if not keywords:
            raise forms.ValidationError("No keywords provided.")
        return keywords[:MAX_KEYWORDS_PER_BATCH]

    def clean_country(self):
        raw = self.cleaned_data.get("country", "")
        if not raw:
            return ""
        return _clean_country(raw)


class RankingForm(forms.Form):
    keyword_id = forms.CharField(max_length=64)
    rank = forms.IntegerField(min_value=1, required=False)
    impressions = forms.IntegerField(min_value=0, required=False)


class RatingForm(forms.Form):
    rating = forms.FloatField(min_value=0, max_value=5)
    rating_count = forms.IntegerField(min_value=0)


class CountryForm(forms.Form):
    country = forms.CharField()

    def clean_country(self):
        return _clean_country(self.cleaned_data.get("country"))


class RefreshForm(forms.Form):
    app_id = forms.CharField(required=False, max_length=64)
    keyword_ids = forms.CharField(
        required=False,
        help_text="Comma-separated keyword ids; limits the refresh to those keywords.",
    )

    def clean_keyword_ids(self):
        raw = self.cleaned_data.get("keyword_ids", "")
        return [k.strip() for k in raw.split(",") if k.strip()]
