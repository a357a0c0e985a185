import unittest

from clipforge.errors import GraphIntegrityError
from clipforge.graph import (
    OP_CONCAT,
    OP_OVERLAY,
    OP_PAD,
    OP_RETIME,
    OP_SCALE,
    OP_TRIM,
    FilterGraph,
    FilterNode,
    fmt_sec,
)


def _two_clip_graph() -> FilterGraph:
    g = FilterGraph(source_count=2, graph_id="t")
    chains = []
    for i in range(2):
        lbl = g.add(OP_TRIM, [g.source(i)], f"main{i}", "trim", start=1.0, duration=2.5)
        lbl = g.add(OP_RETIME, [lbl], f"main{i}", "retime")
        lbl = g.add(OP_SCALE, [lbl], f"main{i}", "fit", width=640, height=360, fit=True)
        chains.append(g.add(OP_PAD, [lbl], f"main{i}", "pad", width=640, height=360))
    g.output = g.add(OP_CONCAT, chains, "main", "concat")
    return g


class TestFmtSec(unittest.TestCase):
    def test_trims_trailing_zeros(self):
        self.assertEqual(fmt_sec(3.0), "3")
        self.assertEqual(fmt_sec(2.5), "2.5")
        self.assertEqual(fmt_sec(0.1234567), "0.123457")
        self.assertEqual(fmt_sec(0.0), "0")


class TestFilterGraph(unittest.TestCase):
    def test_serialize_fuses_linear_chains(self):
        g = _two_clip_graph()
        chain = (
            "trim=start=1:duration=2.5,setpts=PTS-STARTPTS,"
            "scale=640:360:force_original_aspect_ratio=decrease,"
            "pad=640:360:(ow-iw)/2:(oh-ih)/2:color=black,setsar=1"
        )
        self.assertEqual(
            g.serialize(),
            f"[0:v]{chain}[main0_pad_t];"
            f"[1:v]{chain}[main1_pad_t];"
            "[main0_pad_t][main1_pad_t]concat=n=2:v=1:a=0[main_concat_t]",
        )

    def test_frame_size_follows_base_input(self):
        g = _two_clip_graph()
        self.assertEqual(g.frame_size(g.output), (640, 360))
        self.assertIsNone(g.frame_size("0:v"))

    def test_labels_carry_graph_id(self):
        a = FilterGraph(source_count=1)
        b = FilterGraph(source_count=1)
        self.assertNotEqual(a.graph_id, b.graph_id)
        self.assertNotEqual(a.label("main0", "trim"), b.label("main0", "trim"))

    def test_duplicate_label_rejected_on_add(self):
        g = FilterGraph(source_count=1, graph_id="t")
        g.add(OP_TRIM, [g.source(0)], "main0", "trim", start=0, duration=1)
        with self.assertRaises(GraphIntegrityError):
            g.add(OP_TRIM, [g.source(0)], "main0", "trim", start=0, duration=1)

    def test_unknown_input_label(self):
        g = FilterGraph(source_count=1, graph_id="t")
        g.output = g.add(OP_RETIME, ["never_made"], "main0", "retime")
        with self.assertRaises(GraphIntegrityError):
            g.validate()

    def test_source_index_out_of_range(self):
        g = FilterGraph(source_count=1, graph_id="t")
        g.output = g.add(OP_TRIM, [g.source(3)], "main0", "trim", start=0, duration=1)
        with self.assertRaises(GraphIntegrityError):
            g.serialize()

    def test_dangling_output(self):
        g = FilterGraph(source_count=2, graph_id="t")
        g.add(OP_TRIM, [g.source(0)], "main0", "trim", start=0, duration=1)
        g.output = g.add(OP_TRIM, [g.source(1)], "main1", "trim", start=0, duration=1)
        with self.assertRaises(GraphIntegrityError):
            g.validate()

    def test_missing_final_output(self):
        g = FilterGraph(source_count=1, graph_id="t")
        g.add(OP_TRIM, [g.source(0)], "main0", "trim", start=0, duration=1)
        with self.assertRaises(GraphIntegrityError):
            g.validate()

    def test_label_consumed_twice(self):
        g = FilterGraph(source_count=1, graph_id="t")
        a = g.add(OP_TRIM, [g.source(0)], "main0", "trim", start=0, duration=1)
        g.output = g.add(OP_OVERLAY, [a, a], "secondary0", "overlay", x=0, y=0, start=0, opacity=1.0)
        with self.assertRaises(GraphIntegrityError):
            g.validate()

    def test_cycle_detected(self):
        g = FilterGraph(source_count=1, graph_id="t")
        g.nodes.append(FilterNode(op=OP_RETIME, inputs=["b"], output="a"))
        g.nodes.append(FilterNode(op=OP_RETIME, inputs=["a"], output="b"))
        with self.assertRaises(GraphIntegrityError):
            g.topological_order()

    def test_topological_order_is_stable(self):
        g = _two_clip_graph()
        self.assertEqual(g.topological_order(), list(range(len(g.nodes))))

    def test_overlay_render_keeps_gate_and_ignores_opacity(self):
        n = FilterNode(op=OP_OVERLAY, inputs=["a", "b"], output="c", params={"x": 960, "y": 540, "start": 3.0, "opacity": 0.5})
        self.assertEqual(n.render(), "overlay=x=960:y=540:eof_action=pass:enable='gte(t,3)'")

    def test_unknown_op(self):
        with self.assertRaises(GraphIntegrityError):
            FilterNode(op="blur", inputs=["a"], output="b").render()


if __name__ == "__main__":
    unittest.main()
