import io
import time
import unittest as ut

from bucketfs.util import (
    ChunkReader, CombinedHaltFlag, DeadlineHaltFlag, EventHaltFlag, HaltFlag, HaltInterrupt,
    copy_stream, responsive_sleep
)


class HaltFlagTest(ut.TestCase):

    def test_event(self):
        flag = EventHaltFlag()
        self.assertTrue(flag.check_continue())
        flag.halt()
        self.assertFalse(flag.check_continue(False))
        self.assertRaises(HaltInterrupt, flag.check_continue)

    def test_deadline(self):
        self.assertTrue(DeadlineHaltFlag(60).check_continue())
        self.assertRaises(HaltInterrupt, DeadlineHaltFlag(0).check_continue)

    def test_combined(self):
        first = EventHaltFlag()
        flag = CombinedHaltFlag(None, first, EventHaltFlag())
        self.assertTrue(flag.check_continue())
        first.halt()
        self.assertRaises(HaltInterrupt, flag.breakpoint)

    def test_iterate(self):
        flag = EventHaltFlag()
        results = []
        for x in HaltFlag.iterate([1, 2, 3], flag, False):
            results.append(x)
            flag.halt()
        self.assertEqual(results, [1])

    def test_responsive_sleep(self):
        flag = EventHaltFlag()
        flag.halt()
        start = time.monotonic()
        self.assertRaises(HaltInterrupt, responsive_sleep, 10, flag)
        self.assertLess(time.monotonic() - start, 1)


class StreamTest(ut.TestCase):

    def test_chunk_reader(self):
        closed = []
        reader = io.BufferedReader(ChunkReader([b"abc", b"", b"defg"], lambda: closed.append(True)))
        self.assertEqual(reader.read(2), b"ab")
        self.assertEqual(reader.read(), b"cdefg")
        reader.close()
        reader.close()
        self.assertEqual(closed, [True])

    def test_chunk_reader_halts(self):
        flag = EventHaltFlag()
        flag.halt()
        reader = ChunkReader([b"abc"], halt_flag=flag)
        self.assertRaises(HaltInterrupt, reader.read, 2)

    def test_copy_stream(self):
        dest = io.BytesIO()
        self.assertEqual(copy_stream(io.BytesIO(b"x" * 100), dest, chunk_size=7), 100)
        self.assertEqual(dest.getvalue(), b"x" * 100)
