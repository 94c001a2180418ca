# =========================
# FILE: phoneagent/apps.py
# =========================
"""
App name → package resolution.

Spoken/typed names are messy ("youtube", "YouTube", "微信", "open the maps app").
find_package() tries a chain of matchers, first hit wins:

    exact label → case-insensitive label → containment (either way)
    → common-app alias table → character / word overlap score

Installed apps and their labels are fetched once and cached until
clear_cache(); matching itself never touches the device.
"""

import re
from difflib import SequenceMatcher
from typing import Callable, Dict, List, Optional, Tuple

from phoneagent.adb import RootShell

# -------------------------
# Common app aliases (name → package)
# -------------------------
COMMON_APPS: Dict[str, str] = {
    # Chinese apps
    "微信": "com.tencent.mm",
    "wechat": "com.tencent.mm",
    "qq": "com.tencent.mobileqq",
    "支付宝": "com.eg.android.AlipayGphone",
    "alipay": "com.eg.android.AlipayGphone",
    "淘宝": "com.taobao.taobao",
    "taobao": "com.taobao.taobao",
    "京东": "com.jingdong.app.mall",
    "拼多多": "com.xunmeng.pinduoduo",
    "美团": "com.sankuai.meituan",
    "饿了么": "me.ele",
    "抖音": "com.ss.android.ugc.aweme",
    "douyin": "com.ss.android.ugc.aweme",
    "快手": "com.smile.gifmaker",
    "小红书": "com.xingin.xhs",
    "微博": "com.sina.weibo",
    "哔哩哔哩": "tv.danmaku.bili",
    "b站": "tv.danmaku.bili",
    "bilibili": "tv.danmaku.bili",
    "知乎": "com.zhihu.android",
    "高德地图": "com.autonavi.minimap",
    "百度地图": "com.baidu.BaiduMap",
    "网易云音乐": "com.netease.cloudmusic",
    "qq音乐": "com.tencent.qqmusic",
    "设置": "com.android.settings",
    "相机": "com.android.camera",
    "相册": "com.android.gallery3d",
    "浏览器": "com.android.browser",
    "电话": "com.android.dialer",
    "短信": "com.android.mms",
    "日历": "com.android.calendar",
    "时钟": "com.android.deskclock",
    "计算器": "com.android.calculator2",
    # Google / common
    "youtube": "com.google.android.youtube",
    "yt": "com.google.android.youtube",
    "play store": "com.android.vending",
    "playstore": "com.android.vending",
    "gmail": "com.google.android.gm",
    "google meet": "com.google.android.apps.tachyon",
    "meet": "com.google.android.apps.tachyon",
    "phone": "com.google.android.dialer",
    "dialer": "com.google.android.dialer",
    "messages": "com.google.android.apps.messaging",
    "settings": "com.android.settings",
    "camera": "com.android.camera",
    "chrome": "com.android.chrome",
    "browser": "com.android.chrome",
    "maps": "com.google.android.apps.maps",
    "google maps": "com.google.android.apps.maps",
    "photos": "com.google.android.apps.photos",
    "whatsapp": "com.whatsapp",
    "telegram": "org.telegram.messenger",
    "spotify": "com.spotify.music",
    "netflix": "com.netflix.mediaclient",
    "instagram": "com.instagram.android",
    "insta": "com.instagram.android",
    "twitter": "com.twitter.android",
    "chatgpt": "com.openai.chatgpt",
    "linkedin": "com.linkedin.android",
    "calculator": "com.android.calculator2",
    "clock": "com.android.deskclock",
    "calendar": "com.android.calendar",
    "contacts": "com.android.contacts",
}

CJK_RE = re.compile(r"[一-鿿]")
WORD_RE = re.compile(r"[a-z]{2,}")

Matcher = Callable[[str, Dict[str, str]], Optional[str]]


def label_from_package_name(pkg: str) -> str:
    return (
        pkg.split(".")[-1]
        .replace("-", " ")
        .replace("_", " ")
        .title()
    )


def _tokens(text: str) -> set:
    """Each CJK ideograph and each ASCII word of 2+ letters."""
    low = text.lower()
    return set(CJK_RE.findall(low)) | set(WORD_RE.findall(low))


# ===========================================================
# Matchers (query, {label: package}) → package | None
# ===========================================================
def match_exact(query: str, apps: Dict[str, str]) -> Optional[str]:
    return apps.get(query)


def match_ignore_case(query: str, apps: Dict[str, str]) -> Optional[str]:
    q = query.lower()
    for label, pkg in apps.items():
        if label.lower() == q:
            return pkg
    return None


def match_contains(query: str, apps: Dict[str, str]) -> Optional[str]:
    q = query.lower()
    for label, pkg in apps.items():
        lab = label.lower()
        if lab and (q in lab or lab in q):
            return pkg
    return None


def match_alias(query: str, apps: Dict[str, str]) -> Optional[str]:
    q = query.lower()
    # System apps are often missing from the installed list: trust an exact alias
    if q in COMMON_APPS:
        return COMMON_APPS[q]
    installed = set(apps.values())
    for alias, pkg in COMMON_APPS.items():
        if (alias in q or q in alias) and pkg in installed:
            return pkg
    return None


def match_overlap(query: str, apps: Dict[str, str]) -> Optional[str]:
    wanted = _tokens(query)
    if not wanted:
        return None
    best_pkg, best_score = None, 0
    for label, pkg in apps.items():
        score = len(wanted & _tokens(label))
        if score > best_score:
            best_pkg, best_score = pkg, score
    return best_pkg


MATCHERS: List[Matcher] = [
    match_exact,
    match_ignore_case,
    match_contains,
    match_alias,
    match_overlap,
]


class AppResolver:
    def __init__(self, shell: RootShell) -> None:
        self.shell = shell
        self._apps: Optional[Dict[str, str]] = None  # label → package

    # ==========================================================
    # PACKAGE DISCOVERY
    # ==========================================================
    def _launchable_packages(self) -> List[str]:
        out = self.shell.execute(
            "cmd package query-activities --brief "
            "-a android.intent.action.MAIN -c android.intent.category.LAUNCHER"
        ).output
        pkgs = set()
        for line in out.splitlines():
            line = line.strip()
            if "/" in line:
                pkgs.add(line.split("/")[0])
        return sorted(pkgs)

    def _third_party_packages(self) -> List[str]:
        out = self.shell.execute("pm list packages -3").output
        return sorted(
            line.strip()[len("package:"):]
            for line in out.splitlines()
            if line.strip().startswith("package:")
        )

    def _label_for(self, pkg: str) -> str:
        out = self.shell.execute(f"dumpsys package {pkg} | grep -m 1 nonLocalizedLabel").output
        m = re.search(r"nonLocalizedLabel=(.+?)(?:\s+\w+=|$)", out)
        if m and m.group(1).strip() not in ("", "null"):
            return m.group(1).strip()
        return label_from_package_name(pkg)

    def installed_apps(self) -> Dict[str, str]:
        """label → package for launchable + third-party apps (cached)."""
        if self._apps is not None:
            return self._apps
        packages = sorted(set(self._launchable_packages()) | set(self._third_party_packages()))
        apps: Dict[str, str] = {}
        for pkg in packages:
            apps.setdefault(self._label_for(pkg), pkg)
        self._apps = apps
        print(f"📦 Indexed {len(apps)} apps")
        return apps

    def clear_cache(self) -> None:
        self._apps = None

    # ==========================================================
    # RESOLUTION
    # ==========================================================
    def find_package(self, name: str) -> Optional[str]:
        query = name.strip()
        if not query:
            return None
        # Already a package name
        if "." in query and " " not in query and not CJK_RE.search(query):
            return query

        apps = self.installed_apps()
        for matcher in MATCHERS:
            pkg = matcher(query, apps)
            if pkg:
                return pkg
        return None

    def candidates(self, query: str, limit: int = 7) -> List[Tuple[float, str, str]]:
        """Ranked (score, label, package) list for showing the user."""
        q = query.strip().lower()
        if not q:
            return []
        scored: List[Tuple[float, str, str]] = []
        for label, pkg in self.installed_apps().items():
            lab = label.lower()
            s_fuzzy = SequenceMatcher(None, q, lab).ratio()
            s_sub = 0.15 if q in lab else 0.0
            s_pkg = 0.10 if q in pkg.lower() else 0.0
            scored.append((min(1.0, s_fuzzy + s_sub + s_pkg), label, pkg))
        scored.sort(key=lambda x: x[0], reverse=True)
        return scored[:limit]
