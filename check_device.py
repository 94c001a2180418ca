#!/usr/bin/env python3
"""
Quick device readiness check: adb, root, screen size, screenshot, AI provider.
"""

import sys

from phoneagent.adb import AdbClient, AdbError, RootShell
from phoneagent.ai_client import AIClient
from phoneagent.config import ConfigManager
from phoneagent.device import DeviceController


def main() -> int:
    print("\n" + "=" * 60)
    print("DEVICE CHECK")
    print("=" * 60)

    settings = ConfigManager().load()

    print("\n1. ADB and device...")
    try:
        adb = AdbClient(serial=settings.adb_serial)
        devs = adb.ensure_device()
    except AdbError as e:
        print(f"   ❌ {e}")
        return 1
    for dev in devs:
        print(f"   ✅ {dev}")

    shell = RootShell(adb, use_root=settings.use_root)

    print("\n2. Root access...")
    if shell.check_root_access():
        print("   ✅ su works (uid=0)")
    elif settings.use_root:
        print("   ❌ No root. Grant su to the shell user or set use_root=false")
        return 1
    else:
        print("   ⚠️ No root (use_root=false, some actions may fail)")

    device = DeviceController(shell)

    print("\n3. Screen...")
    try:
        w, h = device.screen_size()
        print(f"   ✅ {w}x{h}, screen {'on' if device.is_screen_on() else 'off'}")
    except RuntimeError as e:
        print(f"   ❌ {e}")
        return 1

    print("\n4. Screenshot...")
    image = device.screenshot_base64()
    if image:
        print(f"   ✅ JPEG ready ({len(image) // 1024} KB base64)")
    else:
        print("   ❌ screencap failed")

    print("\n5. AI provider...")
    if not settings.provider.is_configured:
        print("   ⚠️ Not configured (run main.py and type 'config')")
    else:
        ai = AIClient(settings.provider)
        ok = ai.test_connection()
        print(f"   {'✅' if ok else '❌'} {settings.provider.provider} / {settings.provider.resolved_model}")
        models = ai.available_models()
        if models:
            print(f"   Models: {', '.join(models)}")
        ai.close()

    print("\n" + "=" * 60 + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
