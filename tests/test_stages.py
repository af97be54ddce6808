import re

from archcrypt import stages
from archcrypt.model import ExecutionMode, InstallPlan, derive_layout
from archcrypt.rollback import RollbackManager

FSTAB = (
    "UUID=aaaa /     ext4 rw 0 1\n"
    "UUID=bbbb /home ext4 rw 0 2\n"
    "UUID=CCCC /boot vfat rw 0 2\n"
)
BLKID = ("blkid", "-s", "UUID", "-o", "value", "/dev/sdb2")

STAGE_NAMES = [
    "WipeSignatures",
    "Partition",
    "FormatESP",
    "EncryptSetup",
    "VolumeManage",
    "Filesystem",
    "Mount",
    "MirrorConfigure",
    "BaseInstall",
    "FstabGenerate",
    "ChrootConfigure",
]


def _context(runner, target, scripted_input, dry_run=False):
    plan = InstallPlan(disk="/dev/sdb", target=str(target), dry_run=dry_run)
    return stages.StageContext(
        plan=plan,
        layout=derive_layout(plan),
        runner=runner,
        rollback=RollbackManager(),
        confirm_fn=lambda prompt: True,
        input_fn=scripted_input("", "archbox"),
    )


def test_stage_order_is_fixed():
    assert [s.name for s in stages.build_stages()] == STAGE_NAMES


def test_full_run_succeeds(tmp_path, fake_runner, scripted_input):
    runner = fake_runner(outputs={"genfstab": FSTAB}, queries={BLKID: (0, "1234-5678\n")})
    ctx = _context(runner, tmp_path, scripted_input)
    executor = stages.StageExecutor(ctx)

    result = executor.run()

    assert result.ok and result.stage == "ChrootConfigure"
    assert executor.completed == STAGE_NAMES
    assert (tmp_path / "etc" / "fstab").read_text(encoding="utf-8") == FSTAB
    assert runner.commands[0] == ["wipefs", "-a", "/dev/sdb"]
    assert runner.commands[-1] == ["arch-chroot", str(tmp_path), "/chroot-setup.sh"]


def test_failure_stops_later_stages(tmp_path, fake_runner, scripted_input):
    runner = fake_runner(fail_on="mount")
    ctx = _context(runner, tmp_path, scripted_input)
    executor = stages.StageExecutor(ctx)

    result = executor.run()

    assert not result.ok
    assert result.stage == "Mount"
    assert "command failed (1): mount /dev/vg0/root" in result.cause
    assert executor.completed == STAGE_NAMES[:6]
    assert runner.commands[-1][0] == "mount"
    assert not any(cmd[0] in ("pacman", "reflector", "pacstrap") for cmd in runner.commands)


def test_fstab_decline_is_a_stage_failure(tmp_path, fake_runner, scripted_input):
    runner = fake_runner(outputs={"genfstab": FSTAB})
    ctx = _context(runner, tmp_path, scripted_input)
    ctx.confirm_fn = lambda prompt: False

    result = stages.StageExecutor(ctx).run()

    assert result.stage == "FstabGenerate"
    assert "declined" in result.cause
    assert not any(cmd[0] == "arch-chroot" for cmd in runner.commands)


def test_chroot_failure_names_inner_stage(tmp_path, fake_runner, scripted_input):
    runner = fake_runner(
        outputs={"genfstab": FSTAB},
        queries={BLKID: (0, "1234-5678\n")},
        fail_on="arch-chroot",
    )
    (tmp_path / "chroot-setup.failed").write_text("InitImageRebuild\n", encoding="utf-8")

    result = stages.StageExecutor(_context(runner, tmp_path, scripted_input)).run()

    assert result.stage == "ChrootConfigure/InitImageRebuild"
    assert result.cause == "exit status 1"


def test_dry_run_records_the_live_sequence(tmp_path, fake_runner, scripted_input):
    live = fake_runner(outputs={"genfstab": FSTAB}, queries={BLKID: (0, "1234-5678\n")})
    stages.StageExecutor(_context(live, tmp_path / "live", scripted_input)).run()

    dry = fake_runner(mode=ExecutionMode.DRY_RUN)
    result = stages.StageExecutor(_context(dry, tmp_path / "live", scripted_input, dry_run=True)).run()

    def normalize(history):
        return [re.sub(r"\(\d+ bytes\)", "", line) for line in history]

    assert result.ok
    assert dry.commands == []
    assert normalize(dry.history) == normalize(live.history)


def test_cleanup_is_armed_unmount_first(tmp_path, fake_runner, scripted_input):
    runner = fake_runner()
    ctx = _context(runner, tmp_path, scripted_input)

    stages.register_cleanup(ctx)
    ran = ctx.rollback.rollback("Installation failed")

    assert ran == ["unmount", "close-luks"]
    assert runner.commands == [
        ["umount", "-R", str(tmp_path)],
        ["vgchange", "-an", "vg0"],
        ["cryptsetup", "close", "cryptlvm"],
    ]
